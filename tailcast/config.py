import os, yaml
from typing import Any, Dict, Optional
from .errors import ConfigError, DirectoryScanFailure
from .logger import get_logger
from .watcher import find_most_recent_log
log = get_logger("config")

DEFAULTS: Dict[str, Any] = {
    "file": None,
    "dir": None,
    "host": "0.0.0.0",
    "port": 8080,
    "interval_ms": 300,
    "capacity": 100,
    "ws_port": 0,
    "fs_events": False,
    "keepalive_seconds": 15.0,
}
LOG_DEFAULTS: Dict[str, Any] = {
    "level": "INFO",
    "file": None,
    "max_bytes": 10 * 1024 * 1024,
    "backup_count": 5,
    "timezone": None,
}


def load_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"配置文件不存在：{path}") from e
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"配置文件读取失败 {path}：{e}") from e
    if not isinstance(cfg, dict):
        raise ConfigError(f"配置文件格式错误：{path}")
    return cfg


class Config:
    def __init__(self, data: Optional[Dict[str, Any]] = None, **overrides):
        cfg = dict(DEFAULTS)
        cfg.update({k: v for k, v in (data or {}).items() if k != "log"})
        cfg.update({k: v for k, v in overrides.items() if v is not None and k in DEFAULTS})
        unknown = set(cfg) - set(DEFAULTS)
        if unknown:
            raise ConfigError(f"未知配置项：{', '.join(sorted(unknown))}")

        self.file_path: Optional[str] = cfg["file"]
        self.dir_path: Optional[str] = cfg["dir"]
        self.host: str = cfg["host"]
        self.port: int = cfg["port"]
        self.interval_ms: int = cfg["interval_ms"]
        self.capacity: int = cfg["capacity"]
        self.ws_port: int = cfg["ws_port"]
        self.fs_events: bool = bool(cfg["fs_events"])
        self.keepalive: float = cfg["keepalive_seconds"]

        log_cfg = dict(LOG_DEFAULTS)
        log_cfg.update((data or {}).get("log") or {})
        for k in LOG_DEFAULTS:
            if overrides.get(f"log_{k}") is not None:
                log_cfg[k] = overrides[f"log_{k}"]
        self.log_level: str = str(log_cfg["level"]).upper()
        self.log_file: Optional[str] = log_cfg["file"]
        self.log_max_bytes: int = log_cfg["max_bytes"]
        self.log_backup_count: int = log_cfg["backup_count"]
        self.log_timezone: Optional[str] = log_cfg["timezone"]

        self.target: Optional[str] = None

    @classmethod
    def from_file(cls, path: str | None, **overrides) -> "Config":
        return cls(load_file(path) if path else None, **overrides)

    @property
    def interval(self) -> float:
        return self.interval_ms / 1000.0

    def validate(self) -> str:
        """校验配置并确定要监控的文件，返回文件路径"""
        if self.file_path and self.dir_path:
            raise ConfigError("file 与 dir 只能二选一")
        if not self.file_path and not self.dir_path:
            raise ConfigError("必须指定 file 或 dir")
        for name, value in (("interval_ms", self.interval_ms), ("capacity", self.capacity)):
            if not isinstance(value, int) or value <= 0:
                raise ConfigError(f"{name} 必须是正整数：{value!r}")
        if not isinstance(self.keepalive, (int, float)) or self.keepalive <= 0:
            raise ConfigError(f"keepalive_seconds 必须大于 0：{self.keepalive!r}")
        for name, value in (("port", self.port), ("ws_port", self.ws_port)):
            if not isinstance(value, int) or not 0 <= value <= 65535:
                raise ConfigError(f"{name} 不是合法端口：{value!r}")

        if self.file_path:
            target = self.file_path
        else:
            try:
                target = find_most_recent_log(self.dir_path)
            except DirectoryScanFailure as e:
                raise ConfigError(f"查找日志文件失败：{e}") from e
            log.info("使用最新的日志文件：%s", target)
        if not os.path.isfile(target):
            raise ConfigError(f"日志文件不存在：{target}")
        self.target = target
        return target
