"""
数据模型模块

- wire: 与供应商无关的中间表示
- anthropic: 原生协议请求/响应/流式事件
- openai / google: 各供应商的请求/响应
- errors: 错误类型与原生错误响应
"""

from .errors import (
    BackendError,
    BridgeError,
    ConfigurationError,
    MalformedRequestError,
    StreamInterruptedError,
    TransientBackendError,
    TranslationError,
)
from .wire import (
    StopReason,
    StreamDelta,
    Usage,
    WireMessage,
    WireRequest,
    WireResponse,
)

__all__ = [
    "BridgeError",
    "ConfigurationError",
    "MalformedRequestError",
    "TranslationError",
    "BackendError",
    "TransientBackendError",
    "StreamInterruptedError",
    "StopReason",
    "StreamDelta",
    "Usage",
    "WireMessage",
    "WireRequest",
    "WireResponse",
]
