#!/usr/bin/env python3
"""
WebSocket 推日志行，每行一条文本消息
"""
from websockets.exceptions import ConnectionClosed
from websockets.sync.server import Server, ServerConnection, serve

from .broadcaster import Broadcaster
from .errors import SubscriberClosed
from .logger import get_logger

log = get_logger("ws")


def make_handler(hub: Broadcaster, keepalive: float = 15.0):
    def logs(websocket: ServerConnection):
        sub = hub.subscribe()
        try:
            while True:
                try:
                    line = sub.get(keepalive)
                except SubscriberClosed as e:
                    log.info("WebSocket 推送结束：%s", type(e).__name__)
                    break
                if line is None:
                    websocket.ping()
                else:
                    websocket.send(line)
        except ConnectionClosed:
            log.info("WebSocket 客户端已断开")
        finally:
            hub.unsubscribe(sub)

    return logs


def make_ws_server(hub: Broadcaster, host: str = "0.0.0.0", port: int = 8081,
                   keepalive: float = 15.0) -> Server:
    return serve(make_handler(hub, keepalive), host, port)
