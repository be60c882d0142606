#!/usr/bin/env python3
"""
HTTP 服务：
  /         日志查看页面
  /logs     SSE 推送新日志行
  /content  当前日志文件全文
  /health   状态
"""
import os, json, time, html
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from urllib.parse import urlsplit

from .broadcaster import Broadcaster
from .errors import FileUnavailable, SubscriberClosed, SubscriberOverflow
from .logger import get_logger
from .watcher import TailWatcher

log = get_logger("web")

INDEX_HTML = """<!DOCTYPE html>
<html><head><meta charset="utf-8"><title>{filename}</title>
<style>
body{{background:#1e1e1e;color:#d4d4d4;font-family:monospace;margin:0}}
header{{padding:8px 16px;background:#2d2d2d}}
#log-container{{height:calc(100vh - 48px);overflow-y:auto;padding:8px 16px;white-space:pre-wrap}}
.error{{color:#f48771}}.warning{{color:#dcdcaa}}.info{{color:#9cdcfe}}.debug{{color:#808080}}
</style></head>
<body>
<header>{filename} &middot; {started}</header>
<div id="log-container"></div>
<script>
const box = document.getElementById("log-container");
function render(line) {{
  const div = document.createElement("div");
  div.textContent = line;
  if (/ERROR|CRITICAL|FATAL/.test(line)) div.className = "error";
  else if (/WARN/.test(line)) div.className = "warning";
  else if (/INFO/.test(line)) div.className = "info";
  else if (/DEBUG/.test(line)) div.className = "debug";
  return div;
}}
fetch("/content").then(r => r.text()).then(text => {{
  box.innerHTML = "";
  text.split("\\n").filter(l => l.trim()).forEach(l => box.appendChild(render(l)));
  box.scrollTop = box.scrollHeight;
}});
const es = new EventSource("/logs");
es.onmessage = e => {{
  const atBottom = box.scrollHeight - box.clientHeight <= box.scrollTop + 100;
  box.appendChild(render(e.data));
  if (atBottom) box.scrollTop = box.scrollHeight;
}};
es.onerror = () => console.error("SSE 连接断开，正在重连...");
</script>
</body></html>
"""


def format_event(line: str) -> str:
    """SSE 把 CR 也当换行，按 CR 拆成多个 data 字段"""
    return "".join(f"data: {part}\n" for part in line.split("\r")) + "\n"


class LogHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, address, hub: Broadcaster, watcher: TailWatcher, keepalive: float = 15.0):
        self.hub = hub
        self.watcher = watcher
        self.keepalive = keepalive
        self.started = time.strftime("%Y-%m-%d %H:%M:%S %Z")
        super().__init__(address, Handler)


class Handler(BaseHTTPRequestHandler):
    server: LogHTTPServer

    def end_headers(self):
        self.send_header("Access-Control-Allow-Origin", "*")
        super().end_headers()

    def log_message(self, format, *args):
        log.debug("%s - %s", self.address_string(), format % args)

    def do_OPTIONS(self):
        self.send_response(200)
        self.end_headers()

    def do_GET(self):
        route = urlsplit(self.path).path
        if route == "/":
            self._index()
        elif route == "/logs":
            self._stream()
        elif route == "/content":
            self._content()
        elif route == "/health":
            self._health()
        else:
            self.send_error(404)

    def _send(self, body: bytes, content_type: str):
        self.send_response(200)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _index(self):
        page = INDEX_HTML.format(filename=html.escape(os.path.basename(self.server.watcher.path)),
                                 started=html.escape(self.server.started))
        self._send(page.encode("utf-8"), "text/html; charset=utf-8")

    def _content(self):
        try:
            body = self.server.watcher.read_snapshot()
        except FileUnavailable as e:
            log.error("读取日志全文失败：%s", e)
            self.send_error(500, "Could not open log file")
            return
        self._send(body, "text/plain; charset=utf-8")

    def _health(self):
        watcher = self.server.watcher
        body = json.dumps({"status": "ok", "file": watcher.path, "offset": watcher.offset,
                           "subscribers": len(self.server.hub)}, ensure_ascii=False)
        self._send(body.encode("utf-8"), "application/json")

    def _stream(self):
        hub = self.server.hub
        sub = hub.subscribe()
        client = self.address_string()
        try:
            self.send_response(200)
            self.send_header("Content-Type", "text/event-stream")
            self.send_header("Cache-Control", "no-cache")
            self.send_header("Connection", "keep-alive")
            self.end_headers()
            self.wfile.flush()
            while True:
                try:
                    line = sub.get(self.server.keepalive)
                except SubscriberOverflow:
                    log.warning("客户端 %s 消费过慢，已断开推送", client)
                    break
                except SubscriberClosed:
                    break
                chunk = ": keepalive\n\n" if line is None else format_event(line)
                self.wfile.write(chunk.encode("utf-8"))
                self.wfile.flush()
        except ConnectionError:
            log.info("客户端 %s 已断开", client)
        finally:
            hub.unsubscribe(sub)
        self.close_connection = True


def make_server(hub: Broadcaster, watcher: TailWatcher, host: str = "0.0.0.0",
                port: int = 8080, keepalive: float = 15.0) -> LogHTTPServer:
    return LogHTTPServer((host, port), hub, watcher, keepalive)
