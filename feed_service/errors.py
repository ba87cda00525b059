"""
异常定义

  FetchError            请求失败基类（传输层 / 上游状态 / 解码）
  StorageError          持久层读写失败，只在缓存存储内部流转，不对外抛出
  AggregateSourceError  聚合结果中单个数据源的失败记录
"""

from typing import Any, Dict, Optional


class FetchError(Exception):
    """上游数据无法获取"""


class TransportError(FetchError):
    """网络请求未能完成（连接失败、超时）"""

    def __init__(self, target: str, message: str):
        super().__init__(message)
        self.target = target


class UpstreamStatusError(FetchError):
    """上游返回了非成功状态码"""

    def __init__(self, status: int, body: Optional[str] = None, target: str = ""):
        super().__init__(str(status))
        self.status = status
        self.body = body
        self.target = target


class DecodeError(FetchError):
    """响应体不是合法 JSON"""

    def __init__(self, target: str, message: str):
        super().__init__(message)
        self.target = target


class StorageError(Exception):
    """持久层读写失败（配额、序列化、I/O）"""


class AggregateSourceError(Exception):
    """聚合时某个数据源失败，记录 source 与 message"""

    def __init__(self, source: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message
        self.cause = cause

    @classmethod
    def from_exception(cls, source: str, exc: BaseException) -> "AggregateSourceError":
        return cls(source, str(exc) or exc.__class__.__name__, cause=exc)

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "message": self.message}
