"""
拦截层模块

以显式的 httpx transport 策略在进程启动时安装一次：
桥接模式把原生端点请求交给转换管线，追踪模式只记录不重定向。

使用示例:
    from claude_bridge.interceptor import create_http_client

    client = create_http_client(config)
"""

from .transport import (
    BridgeByteStream,
    BridgeTransport,
    TraceTransport,
    create_http_client,
    create_transport,
    match_native_route,
)

__all__ = [
    "BridgeByteStream",
    "BridgeTransport",
    "TraceTransport",
    "create_http_client",
    "create_transport",
    "match_native_route",
]
