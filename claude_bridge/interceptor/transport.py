"""
拦截层：httpx transport 策略

进程启动时选择一次：
- BridgeTransport（桥接模式）：发往原生消息端点的请求交给桥接管线处理，
  其余请求原样转发。
- TraceTransport（追踪模式）：所有请求原样转发，只记录原生端点的请求与响应。

客户端拿到的是普通的 httpx.Response，流式响应按事件产出的节奏逐块到达。
"""

import zlib
from collections.abc import AsyncIterator, Callable
from urllib.parse import urlsplit

import httpx

from claude_bridge.common.logging import generate_request_id, get_logger_with_request_id
from claude_bridge.common.trace_logger import Direction, TraceLogger, decode_body
from claude_bridge.config.settings import BridgeConfig
from claude_bridge.core.bridge import MessagesBridge

MESSAGES_ROUTE = "messages"
COUNT_TOKENS_ROUTE = "count_tokens"

NATIVE_ROUTES = {
    "/v1/messages": MESSAGES_ROUTE,
    "/v1/messages/count_tokens": COUNT_TOKENS_ROUTE,
}

REQUEST_ID_HEADER = "request-id"


def match_native_route(url: httpx.URL, native_base_url: str) -> str | None:
    """
    判断请求地址是否为原生消息端点

    Args:
        url: 请求地址
        native_base_url: 被拦截的原生API地址

    Returns:
        路由名称，不匹配时返回None
    """
    base = urlsplit(native_base_url)
    base_port = base.port or (443 if base.scheme == "https" else 80)
    if url.scheme != base.scheme or url.host != (base.hostname or ""):
        return None
    if (url.port or (443 if url.scheme == "https" else 80)) != base_port:
        return None

    prefix = base.path.rstrip("/")
    path = url.path.rstrip("/")
    if not path.startswith(prefix):
        return None
    return NATIVE_ROUTES.get(path[len(prefix):])


class BridgeByteStream(httpx.AsyncByteStream):
    """把SSE事件迭代器包装为响应体；关闭时关闭整条管线"""

    def __init__(self, events: AsyncIterator[str]):
        self._events = events

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for event in self._events:
            yield event.encode("utf-8")

    async def aclose(self) -> None:
        await self._events.aclose()


class BridgeBodyStream(httpx.AsyncByteStream):
    """非流式响应体；保持未读取状态，调用方可按流式方式读取"""

    def __init__(self, body: bytes):
        self._body = body

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self._body

    async def aclose(self) -> None:
        pass


class BridgeTransport(httpx.AsyncBaseTransport):
    """桥接模式：原生端点请求由桥接管线应答，不访问网络"""

    def __init__(
        self,
        config: BridgeConfig,
        bridge: MessagesBridge | None = None,
        passthrough: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.bridge = bridge or MessagesBridge(config)
        self._passthrough = passthrough or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        route = match_native_route(request.url, self.config.native_base_url)
        if route is None or request.method != "POST":
            return await self._passthrough.handle_async_request(request)

        body = await request.aread()
        request_id = generate_request_id()
        get_logger_with_request_id(request_id).info(
            f"拦截原生请求 - Route: {route}, URL: {request.url}"
        )

        if route == COUNT_TOKENS_ROUTE:
            result = await self.bridge.count_tokens(body, request_id)
        else:
            result = await self.bridge.handle(body, request_id)

        headers = dict(result.headers)
        headers[REQUEST_ID_HEADER] = request_id

        if result.streaming:
            return httpx.Response(
                result.status_code,
                headers=headers,
                stream=BridgeByteStream(result.events),
                request=request,
            )
        body = result.content()
        headers["content-length"] = str(len(body))
        return httpx.Response(
            result.status_code,
            headers=headers,
            stream=BridgeBodyStream(body),
            request=request,
        )

    async def aclose(self) -> None:
        await self.bridge.aclose()
        await self._passthrough.aclose()


class TeeByteStream(httpx.AsyncByteStream):
    """转发响应体的同时收集数据，结束或关闭时回调一次"""

    def __init__(self, stream: httpx.AsyncByteStream, on_complete: Callable[[bytes, bool], None]):
        self._stream = stream
        self._on_complete = on_complete
        self._chunks: list[bytes] = []
        self._completed = False
        self._reported = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self._stream:
            self._chunks.append(chunk)
            yield chunk
        self._completed = True

    async def aclose(self) -> None:
        try:
            await self._stream.aclose()
        finally:
            if not self._reported:
                self._reported = True
                self._on_complete(b"".join(self._chunks), self._completed)


def decode_for_log(raw: bytes, content_encoding: str | None):
    """解压响应体用于记录，客户端收到的字节不受影响"""
    encoding = (content_encoding or "").lower()
    try:
        if encoding == "gzip":
            raw = zlib.decompress(raw, 16 + zlib.MAX_WBITS)
        elif encoding == "deflate":
            raw = zlib.decompress(raw)
        elif encoding and encoding != "identity":
            return f"<{len(raw)} bytes, content-encoding {encoding}>"
    except zlib.error as e:
        return f"<{len(raw)} bytes, undecodable {encoding}: {e}>"
    return decode_body(raw)


class TraceTransport(httpx.AsyncBaseTransport):
    """追踪模式：不重定向，原样转发并记录原生端点的请求与响应"""

    def __init__(
        self,
        config: BridgeConfig,
        trace_logger: TraceLogger | None = None,
        passthrough: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.trace_logger = trace_logger or TraceLogger.from_config(config)
        self._passthrough = passthrough or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        route = match_native_route(request.url, self.config.native_base_url)
        if route is None:
            return await self._passthrough.handle_async_request(request)

        request_id = generate_request_id()
        body = await request.aread()
        self.trace_logger.record(
            request_id,
            Direction.NATIVE_IN,
            decode_body(body),
            method=request.method,
            url=str(request.url),
        )

        response = await self._passthrough.handle_async_request(request)
        content_encoding = response.headers.get("content-encoding")
        status_code = response.status_code

        def on_complete(raw: bytes, completed: bool) -> None:
            self.trace_logger.record(
                request_id,
                Direction.NATIVE_OUT,
                decode_for_log(raw, content_encoding),
                status_code=status_code,
                completed=completed,
            )

        return httpx.Response(
            status_code,
            headers=response.headers,
            stream=TeeByteStream(response.stream, on_complete),
            request=request,
            extensions=response.extensions,
        )

    async def aclose(self) -> None:
        await self._passthrough.aclose()
        await self.trace_logger.aclose()


def create_transport(
    config: BridgeConfig,
    passthrough: httpx.AsyncBaseTransport | None = None,
    trace_logger: TraceLogger | None = None,
    bridge: MessagesBridge | None = None,
) -> httpx.AsyncBaseTransport:
    """根据配置选择拦截策略，两种模式互斥"""
    if config.trace:
        return TraceTransport(config, trace_logger=trace_logger, passthrough=passthrough)
    if bridge is None:
        bridge = MessagesBridge(config, trace_logger=trace_logger)
    return BridgeTransport(config, bridge=bridge, passthrough=passthrough)


def create_http_client(
    config: BridgeConfig,
    transport: httpx.AsyncBaseTransport | None = None,
    **kwargs,
) -> httpx.AsyncClient:
    """
    创建已安装拦截层的 httpx.AsyncClient

    未修改的客户端（例如官方SDK的 http_client 参数）直接使用即可。
    transport 用于注入已构造好的拦截策略。
    """
    kwargs.setdefault("timeout", httpx.Timeout(600.0, connect=10.0))
    return httpx.AsyncClient(transport=transport or create_transport(config), **kwargs)
