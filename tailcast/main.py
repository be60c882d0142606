#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
tailcast
- 监控日志文件（或目录下最新的 .log 文件）
- 新增行通过 SSE / WebSocket 实时推送
- 支持截断、轮转、慢客户端踢出
"""

import argparse
import sys
import threading
from typing import List, Optional

from .broadcaster import Broadcaster
from .config import Config
from .errors import ConfigError
from .logger import get_logger, setup_logging
from .logs_server import make_ws_server
from .watcher import TailWatcher, start_fs_observer
from .web_server import make_server

log = get_logger("main")


# --------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tailcast", description="把日志文件的新增行实时推送到浏览器")
    p.add_argument("--config", help="YAML 配置文件")
    p.add_argument("--file", help="要监控的日志文件")
    p.add_argument("--dir", help="日志目录（使用其中最新的 .log 文件）")
    p.add_argument("--host", help="监听地址 (默认 0.0.0.0)")
    p.add_argument("--port", type=int, help="HTTP 端口 (默认 8080)")
    p.add_argument("--interval-ms", type=int, dest="interval_ms", help="轮询间隔毫秒 (默认 300)")
    p.add_argument("--capacity", type=int, help="每个订阅者的队列容量 (默认 100)")
    p.add_argument("--ws-port", type=int, dest="ws_port", help="WebSocket 端口，0 表示关闭")
    p.add_argument("--fs-events", action="store_true", default=None, dest="fs_events",
                   help="启用文件系统事件，变动时立即检查")
    p.add_argument("--log-level", dest="log_level", help="日志级别")
    p.add_argument("--log-file", dest="log_file", help="日志输出文件")
    return p


def load_config(argv: Optional[List[str]] = None) -> Config:
    args = vars(build_parser().parse_args(argv))
    cfg = Config.from_file(args.pop("config"), **args)
    cfg.validate()
    return cfg


# --------------------------------------------------
def main(argv: Optional[List[str]] = None) -> int:
    try:
        cfg = load_config(argv)
    except ConfigError as e:
        setup_logging()
        log.error("配置错误：%s", e)
        return 2

    setup_logging(cfg.log_level, cfg.log_file, cfg.log_max_bytes,
                  cfg.log_backup_count, cfg.log_timezone)

    hub = Broadcaster(cfg.capacity)
    watcher = TailWatcher(cfg.target)
    stop = threading.Event()
    watcher.start(hub.publish, cfg.interval, stop)

    observer = start_fs_observer(watcher) if cfg.fs_events else None

    ws_server = None
    if cfg.ws_port:
        ws_server = make_ws_server(hub, cfg.host, cfg.ws_port, cfg.keepalive)
        threading.Thread(target=ws_server.serve_forever, name="tailcast-ws", daemon=True).start()
        log.info("WebSocket 推送：ws://%s:%d", cfg.host, cfg.ws_port)

    server = make_server(hub, watcher, cfg.host, cfg.port, cfg.keepalive)
    log.info("服务启动：http://localhost:%d", cfg.port)
    log.info("监控日志文件：%s", cfg.target)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        log.info("收到退出信号，正在关闭...")
    finally:
        stop.set()
        watcher.poke()
        hub.close()
        if observer is not None:
            observer.stop()
            observer.join()
        if ws_server is not None:
            ws_server.shutdown()
        server.server_close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
