import os, logging, time
from datetime import datetime
from logging.handlers import RotatingFileHandler
import coloredlogs
import pytz

ROOT = "tailcast"
FMT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_FMT = "%(asctime)s [%(levelname)s] %(name)s %(funcName)s:%(lineno)d | %(message)s"


class RepeatFilter(logging.Filter):
    """带 throttle 标记的日志在窗口期内只输出一次，避免每次轮询都刷同一条错误"""

    def __init__(self, window: float = 60.0):
        super().__init__()
        self.window = window
        self._last = {}

    def filter(self, record):
        key = getattr(record, "throttle", None)
        if not key:
            return True
        now = time.monotonic()
        last = self._last.get(key)
        if last is not None and now - last < self.window:
            return False
        self._last[key] = now
        return True


def _tz_converter(name: str):
    tz = pytz.timezone(name)
    return lambda ts: datetime.fromtimestamp(ts, tz).timetuple()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT}.{name}")


def setup_logging(level: str = "INFO", log_file: str | None = None,
                  max_bytes: int = 10 * 1024 * 1024, backup_count: int = 5,
                  timezone: str | None = None, throttle_window: float = 60.0) -> logging.Logger:
    logger = logging.getLogger(ROOT)
    for h in list(logger.handlers):
        if isinstance(h, RotatingFileHandler):
            logger.removeHandler(h)
            h.close()
    logger.setLevel(logging.DEBUG)
    coloredlogs.install(level=level.upper(), logger=logger, fmt=FMT)

    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes,
                                           backupCount=backup_count, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FMT))
        logger.addHandler(file_handler)

    converter = _tz_converter(timezone) if timezone else None
    for h in logger.handlers:
        for f in [f for f in h.filters if isinstance(f, RepeatFilter)]:
            h.removeFilter(f)
        # 每个 handler 独立计时
        h.addFilter(RepeatFilter(throttle_window))
        if converter and h.formatter:
            h.formatter.converter = converter
    return logger
