"""
日志行广播：每个订阅者一个有界队列，推送不阻塞，队列满直接踢出
"""
import collections
import threading
from typing import Iterable, Optional, Set, Type

from .errors import SubscriberClosed, SubscriberOverflow
from .logger import get_logger

log = get_logger("broadcaster")
DEFAULT_CAPACITY = 100


class Subscriber:
    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity 必须大于 0")
        self.capacity = capacity
        self._buf = collections.deque()
        self._cond = threading.Condition()
        self._reason: Optional[Type[SubscriberClosed]] = None
        # 正在 get() 中等待、还没分到行的读者数；分到但还没醒来取走的行数
        self._waiting = 0
        self._handed = 0

    @property
    def closed(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[Type[SubscriberClosed]]:
        return self._reason

    def put_nowait(self, line: str) -> bool:
        """有读者在等时直接交给读者，不占队列容量"""
        with self._cond:
            if self._reason is not None:
                return False
            if self._waiting:
                self._waiting -= 1
                self._handed += 1
            elif len(self._buf) - self._handed >= self.capacity:
                return False
            self._buf.append(line)
            self._cond.notify()
            return True

    def get(self, timeout: float | None = None) -> Optional[str]:
        """取下一行；超时返回 None；关闭后先取完剩余行再抛出关闭原因"""
        with self._cond:
            if not self._buf and self._reason is None:
                self._waiting += 1
                self._cond.wait_for(lambda: self._buf or self._reason is not None, timeout)
                if self._handed:
                    self._handed -= 1
                else:
                    self._waiting -= 1
            if self._buf:
                return self._buf.popleft()
            if self._reason is not None:
                raise self._reason()
            return None

    def close(self, reason: Type[SubscriberClosed] = SubscriberClosed) -> bool:
        """幂等；只有第一次关闭生效，返回是否由本次关闭"""
        with self._cond:
            if self._reason is not None:
                return False
            self._reason = reason
            self._cond.notify_all()
            return True

    def __len__(self):
        with self._cond:
            return len(self._buf)


class Broadcaster:
    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self.capacity = capacity
        self._subscribers: Set[Subscriber] = set()
        self._lock = threading.Lock()

    def subscribe(self) -> Subscriber:
        sub = Subscriber(self.capacity)
        with self._lock:
            self._subscribers.add(sub)
            total = len(self._subscribers)
        log.info("新订阅者接入，当前 %d 个", total)
        return sub

    def unsubscribe(self, sub: Subscriber):
        with self._lock:
            if sub not in self._subscribers:
                return
            self._subscribers.discard(sub)
            sub.close()
            total = len(self._subscribers)
        log.info("订阅者离开，当前 %d 个", total)

    def publish(self, batch: Iterable[str]):
        lines = list(batch)
        if not lines:
            return
        with self._lock:
            dropped = []
            for sub in self._subscribers:
                for line in lines:
                    if not sub.put_nowait(line):
                        dropped.append(sub)
                        break
            for sub in dropped:
                self._subscribers.discard(sub)
                sub.close(SubscriberOverflow)
            total = len(self._subscribers)
        if dropped:
            log.warning("%d 个订阅者队列已满（容量 %d），已踢出，剩余 %d 个",
                        len(dropped), self.capacity, total)
        log.debug("推送 %d 行给 %d 个订阅者", len(lines), total)

    def receive(self, sub: Subscriber, timeout: float | None = None) -> Optional[str]:
        return sub.get(timeout)

    def close(self):
        with self._lock:
            subs = list(self._subscribers)
            self._subscribers.clear()
        for sub in subs:
            sub.close()
        if subs:
            log.info("已关闭全部 %d 个订阅者", len(subs))

    def __len__(self):
        with self._lock:
            return len(self._subscribers)
