"""
tailcast 异常类型
"""


class TailcastError(Exception):
    pass


class ConfigError(TailcastError):
    """启动配置错误，进程直接退出"""


class FileUnavailable(TailcastError):
    def __init__(self, path: str, not_found: bool = False):
        self.path = path
        self.not_found = not_found
        super().__init__(f"无法打开日志文件：{path}" + ("（不存在）" if not_found else ""))


class DirectoryScanFailure(TailcastError):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"扫描目录失败 {path}：{reason}")


class ReadFailure(TailcastError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"读取日志文件失败：{path}")


class SubscriberClosed(TailcastError):
    """订阅已关闭（客户端断开或服务关闭）"""


class SubscriberOverflow(SubscriberClosed):
    """队列已满被踢出，客户端需重新订阅"""
