"""
消息桥接管线

原生请求 -> 请求转换 -> 后端调用 -> 响应转换 -> 原生响应。
拦截层（httpx transport）与本地服务器都只调用这里。
"""

import json
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from claude_bridge.common.logging import generate_request_id, get_logger_with_request_id
from claude_bridge.common.token_counter import TokenCounter, token_counter
from claude_bridge.common.trace_logger import Direction, TraceLogger, decode_body
from claude_bridge.config.settings import BridgeConfig
from claude_bridge.core.clients.backend import BackendInvoker
from claude_bridge.core.converters.base import TranslatedRequest, TranslationContext
from claude_bridge.core.converters.request_converter import (
    NativeRequestParser,
    translate_request,
)
from claude_bridge.core.converters.response_converter import WireToNativeConverter
from claude_bridge.core.converters.stream_converters import (
    NativeStreamEncoder,
    accumulate_native_events,
)
from claude_bridge.models.errors import MalformedRequestError, error_response_dict

SSE_HEADERS = {
    "Content-Type": "text/event-stream; charset=utf-8",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

JSON_HEADERS = {"Content-Type": "application/json"}


@dataclass
class BridgeResult:
    """桥接结果：JSON响应体或SSE事件流二选一"""

    status_code: int
    body: dict[str, Any] | None = None
    events: AsyncIterator[str] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    request_id: str | None = None

    @property
    def streaming(self) -> bool:
        return self.events is not None

    def content(self) -> bytes:
        return json.dumps(self.body, ensure_ascii=False).encode("utf-8")


class MessagesBridge:
    """原生消息端点的桥接处理器"""

    def __init__(
        self,
        config: BridgeConfig,
        trace_logger: TraceLogger | None = None,
        invoker: BackendInvoker | None = None,
        counter: TokenCounter | None = None,
    ):
        self.config = config
        self.trace_logger = trace_logger or TraceLogger.from_config(config)
        self.invoker = invoker or BackendInvoker(config, self.trace_logger)
        self.counter = counter or token_counter

    async def aclose(self) -> None:
        await self.invoker.aclose()
        await self.trace_logger.aclose()

    def _error_result(self, request_id: str, status_code: int, message: str) -> BridgeResult:
        body = error_response_dict(status_code, message)
        self.trace_logger.record(request_id, Direction.NATIVE_OUT, body, status_code=status_code)
        return BridgeResult(
            status_code=status_code, body=body, headers=dict(JSON_HEADERS), request_id=request_id
        )

    async def handle(self, raw_body: bytes, request_id: str = None) -> BridgeResult:
        """
        处理一次原生消息请求

        Args:
            raw_body: 捕获到的原生请求体
            request_id: 事务ID，为None时自动生成

        Returns:
            BridgeResult: 非流式为JSON响应体，流式为SSE事件迭代器
        """
        request_id = request_id or generate_request_id()
        bound_logger = get_logger_with_request_id(request_id)
        self.trace_logger.record(request_id, Direction.NATIVE_IN, decode_body(raw_body))

        try:
            wire_request, translated = translate_request(raw_body, self.config, request_id)
        except MalformedRequestError as e:
            bound_logger.error(f"原生请求格式无效 - Error: {e}")
            return self._error_result(request_id, 400, str(e))

        self.trace_logger.record(
            request_id,
            Direction.PROVIDER_OUT,
            translated.body,
            url=translated.url,
            warnings=translated.warnings,
        )

        if not wire_request.stream:
            wire_response = await self.invoker.send(translated, request_id)
            native_response = WireToNativeConverter.convert_response(wire_response, request_id)
            body = native_response.model_dump(exclude_none=True)
            self.trace_logger.record(request_id, Direction.NATIVE_OUT, body, status_code=200)
            return BridgeResult(
                status_code=200, body=body, headers=dict(JSON_HEADERS), request_id=request_id
            )

        # 流开始之前检查凭据，配置错误不以流的形式出现
        self.invoker.ensure_credentials()
        return BridgeResult(
            status_code=200,
            events=self._stream_events(translated, request_id),
            headers=dict(SSE_HEADERS),
            request_id=request_id,
        )

    async def _stream_events(
        self, translated: TranslatedRequest, request_id: str
    ) -> AsyncIterator[str]:
        """逐个产出原生SSE事件；关闭本生成器会关闭后端连接"""
        bound_logger = get_logger_with_request_id(request_id)
        encoder = NativeStreamEncoder(translated.model, request_id)
        emitted: list[str] = []

        try:
            async with aclosing(self.invoker.stream(translated, request_id)) as deltas:
                async with aclosing(encoder.encode(deltas)) as events:
                    async for event in events:
                        emitted.append(event)
                        yield event
        finally:
            completed = encoder.state.stopped
            if not completed:
                bound_logger.warning(f"流式响应被取消 - events: {len(emitted)}")
            if self.trace_logger.enabled:
                self.trace_logger.record(
                    request_id,
                    Direction.NATIVE_OUT,
                    {
                        "events": "".join(emitted),
                        "message": accumulate_native_events(emitted).model_dump(exclude_none=True),
                    },
                    status_code=200,
                    completed=completed,
                )

    async def count_tokens(self, raw_body: bytes, request_id: str = None) -> BridgeResult:
        """
        本地估算count_tokens

        供应商没有对应接口，这里用tiktoken估算，结果只用于count_tokens，
        消息响应的usage始终来自后端。
        """
        request_id = request_id or generate_request_id()
        bound_logger = get_logger_with_request_id(request_id)
        self.trace_logger.record(request_id, Direction.NATIVE_IN, decode_body(raw_body))

        try:
            wire_request = NativeRequestParser.parse_count_tokens(
                raw_body, TranslationContext(request_id)
            )
        except MalformedRequestError as e:
            bound_logger.error(f"count_tokens请求格式无效 - Error: {e}")
            return self._error_result(request_id, 400, str(e))

        body = {"input_tokens": self.counter.count_request_tokens(wire_request)}
        bound_logger.debug(f"count_tokens估算完成 - input_tokens: {body['input_tokens']}")
        self.trace_logger.record(request_id, Direction.NATIVE_OUT, body, status_code=200)
        return BridgeResult(
            status_code=200, body=body, headers=dict(JSON_HEADERS), request_id=request_id
        )
