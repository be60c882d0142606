import os, threading
from typing import Callable, List, Optional
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler
from .errors import DirectoryScanFailure, FileUnavailable, ReadFailure
from .logger import get_logger
log = get_logger("watcher")

LOG_SUFFIX = ".log"
DEFAULT_INTERVAL = 0.3


def _is_log_name(name: str) -> bool:
    return not name.startswith(".") and name.lower().endswith(LOG_SUFFIX)


def find_most_recent_log(dir_path: str) -> str:
    """目录下最新修改的 .log 文件；修改时间相同时按文件名排序取第一个"""
    try:
        entries = list(os.scandir(dir_path))
    except OSError as e:
        raise DirectoryScanFailure(dir_path, str(e)) from e
    files = []
    for entry in entries:
        if not _is_log_name(entry.name):
            continue
        try:
            if not entry.is_file():
                continue
            mtime = entry.stat().st_mtime_ns
        except OSError:
            continue
        files.append((-mtime, entry.name, entry.path))
    if not files:
        raise DirectoryScanFailure(dir_path, "没有找到日志文件")
    files.sort()
    log.debug("目录 %s 共 %d 个日志文件，最新：%s", dir_path, len(files), files[0][2])
    return files[0][2]


class TailWatcher:
    def __init__(self, path: str, offset: int = 0):
        self.path = path
        self.offset = offset
        self._inode: Optional[int] = None
        self._lock = threading.Lock()
        self._wake = threading.Event()

    def _open(self):
        """打开当前文件，返回 (文件, 路径)；文件消失时改开同目录下最新的日志文件"""
        try:
            return open(self.path, "rb"), self.path
        except FileNotFoundError:
            dir_path = os.path.dirname(self.path) or "."
            log.warning("日志文件已不存在：%s，检查目录 %s", self.path, dir_path,
                        extra={"throttle": f"missing:{self.path}"})
        except OSError as e:
            log.error("打开日志文件失败：%s", e, extra={"throttle": f"open:{self.path}"})
            return None, self.path
        try:
            new_path = find_most_recent_log(dir_path)
        except DirectoryScanFailure as e:
            log.warning("未找到新的日志文件：%s", e, extra={"throttle": f"scan:{dir_path}"})
            return None, self.path
        if new_path == self.path:
            return None, self.path
        try:
            return open(new_path, "rb"), new_path
        except OSError as e:
            log.error("打开新日志文件失败 %s：%s", new_path, e)
            return None, self.path

    def _read(self, f, path: str, offset: int, inode: Optional[int]):
        """返回 (inode, 起始偏移, 新数据)；文件被截断或替换时从头读"""
        try:
            st = os.fstat(f.fileno())
            if inode is not None and st.st_ino != inode:
                log.info("日志文件已被替换：%s，从头读取", path)
                offset = 0
            elif st.st_size < offset:
                log.info("日志文件被截断：%s，从头读取", path)
                offset = 0
            if st.st_size <= offset:
                return st.st_ino, offset, b""
            f.seek(offset)
            return st.st_ino, offset, f.read(st.st_size - offset)
        except OSError as e:
            raise ReadFailure(path) from e

    def check_for_new_content(self) -> List[str]:
        with self._lock:
            f, path = self._open()
            if f is None:
                return []
            rotated = path != self.path
            with f:
                try:
                    if rotated:
                        inode, offset, data = self._read(f, path, 0, None)
                    else:
                        inode, offset, data = self._read(f, path, self.offset, self._inode)
                except ReadFailure as e:
                    log.error("%s：%s", e, e.__cause__, extra={"throttle": f"read:{path}"})
                    return []
            if rotated:
                log.info("切换到新的日志文件：%s", path)
                self.path = path
            # 只取完整的行，未写完的行留到下一轮
            end = data.rfind(b"\n")
            self._inode = inode
            self.offset = offset + end + 1
            if end < 0:
                return []
            return [line.rstrip(b"\r").decode("utf-8", errors="replace")
                    for line in data[:end].split(b"\n")]

    def read_snapshot(self) -> bytes:
        with self._lock:
            path = self.path
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise FileUnavailable(path, not_found=True) from e
        except OSError as e:
            raise FileUnavailable(path) from e

    def poke(self):
        self._wake.set()

    def run(self, publish: Callable[[List[str]], None], interval: float = DEFAULT_INTERVAL,
            stop_event: threading.Event | None = None):
        stop_event = stop_event or threading.Event()
        log.info("开始监控日志文件：%s（间隔 %.3f 秒）", self.path, interval)
        while not stop_event.is_set():
            try:
                lines = self.check_for_new_content()
                if lines:
                    log.debug("读到 %d 行新内容", len(lines))
                    publish(lines)
            except Exception as e:
                log.exception("监控循环异常: %s", e)
            self._wake.wait(interval)
            self._wake.clear()
        log.info("停止监控：%s", self.path)

    def start(self, publish: Callable[[List[str]], None], interval: float = DEFAULT_INTERVAL,
              stop_event: threading.Event | None = None) -> threading.Thread:
        t = threading.Thread(target=self.run, args=(publish, interval, stop_event),
                             name="tailcast-watcher", daemon=True)
        t.start()
        return t


class LogDirHandler(FileSystemEventHandler):
    """目录内 .log 文件有变动时立即唤醒轮询"""

    def __init__(self, watcher: TailWatcher):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event):
        if event.is_directory:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if any(p and _is_log_name(os.path.basename(os.fsdecode(p))) for p in paths):
            log.debug("文件事件：%s %s", event.event_type, event.src_path)
            self.watcher.poke()


def start_fs_observer(watcher: TailWatcher) -> Observer:
    dir_path = os.path.dirname(os.path.abspath(watcher.path))
    obs = Observer()
    obs.schedule(LogDirHandler(watcher), dir_path, recursive=False)
    obs.start()
    log.info("已启用文件事件监听：%s", dir_path)
    return obs
