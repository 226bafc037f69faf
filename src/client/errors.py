"""客户端异常：回合级失败都继承 ChatError，编排器据此隔离到单个角色。"""

from __future__ import annotations


class ChatError(Exception):
    """客户端编排过程中的错误基类。"""


class TransportError(ChatError):
    """HTTP 请求失败、非 2xx 响应或无法获取响应流。"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StreamError(ChatError):
    """读取响应流失败。"""


class StreamTimeoutError(StreamError):
    """单次读取超时且尚未收到任何内容。"""

    def __init__(self, message: str = "响应超时"):
        super().__init__(message)


class SchedulerError(ChatError):
    """调度服务调用失败或返回格式不正确。"""


class TurnCancelled(ChatError):
    """取消令牌被触发。不属于错误，编排器会把进行中的消息标记为已取消。"""

    def __init__(self, message: str = "已取消"):
        super().__init__(message)
