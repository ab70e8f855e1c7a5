"""
核心功能模块

提供桥接的核心功能，包括：
- 供应商后端调用器
- 请求/响应格式转换器
- 消息桥接管线

子模块:
- clients: 后端调用器（重试、流式、取消）
- converters: 原生协议 ↔ 中间表示 ↔ 供应商格式转换器
- bridge: 串联以上组件的处理管线
"""

# 导入后端调用器
from .clients import BackendInvoker

# 导入桥接管线
from .bridge import BridgeResult, MessagesBridge

# 导入转换器
from .converters import (
    NativeStreamEncoder,
    WireToNativeConverter,
    translate_request,
)

__all__ = [
    # 客户端
    "BackendInvoker",
    # 管线
    "BridgeResult",
    "MessagesBridge",
    # 转换器
    "NativeStreamEncoder",
    "WireToNativeConverter",
    "translate_request",
]
