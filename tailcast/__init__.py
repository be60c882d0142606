from .broadcaster import Broadcaster, Subscriber
from .watcher import TailWatcher, find_most_recent_log

__version__ = "0.1.0"
__all__ = ["Broadcaster", "Subscriber", "TailWatcher", "find_most_recent_log"]
