"""
后端调用器

向选定的供应商发送已转换的请求，处理重试、流式传输与取消。
每次调用是一个显式状态机：Pending -> Sent -> (Succeeded | Retrying -> Sent | Failed)。
"""

import asyncio
import json
import random
from collections.abc import AsyncIterator
from contextlib import aclosing
from enum import Enum

import httpx

from claude_bridge.common.logging import get_logger_with_request_id
from claude_bridge.common.trace_logger import Direction, TraceLogger, decode_body
from claude_bridge.config.settings import BridgeConfig
from claude_bridge.core.converters.base import TranslatedRequest
from claude_bridge.core.converters.providers import get_adapter
from claude_bridge.core.converters.response_converter import (
    build_error_response,
    describe_backend_error,
)
from claude_bridge.models.errors import (
    BackendError,
    BridgeError,
    ConfigurationError,
    StreamInterruptedError,
    TransientBackendError,
)
from claude_bridge.models.wire import ErrorDelta, StreamDelta, WireResponse


class InvocationState(str, Enum):
    """调用状态"""

    PENDING = "pending"
    SENT = "sent"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


INVOCATION_TRANSITIONS = {
    InvocationState.PENDING: {InvocationState.SENT},
    InvocationState.SENT: {
        InvocationState.SUCCEEDED,
        InvocationState.RETRYING,
        InvocationState.FAILED,
    },
    InvocationState.RETRYING: {InvocationState.SENT},
    InvocationState.SUCCEEDED: set(),
    InvocationState.FAILED: set(),
}


class Invocation:
    """一次后端调用的状态记录"""

    def __init__(self, request_id: str | None = None):
        self.request_id = request_id
        self.state = InvocationState.PENDING
        self.history: list[InvocationState] = [InvocationState.PENDING]
        self.attempts = 0

    def transition(self, state: InvocationState) -> None:
        """
        切换状态

        Raises:
            RuntimeError: 非法的状态转换
        """
        if state not in INVOCATION_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"illegal invocation transition {self.state.value} -> {state.value}"
            )
        if state == InvocationState.SENT:
            self.attempts += 1
        self.state = state
        self.history.append(state)


class RetryPolicy:
    """有界指数退避加抖动

    第n次重试前等待 min(max_delay, base_delay * 2**(n-1))，再乘以 [0.5, 1.0] 的随机因子。
    后端返回数字形式的 Retry-After 时以其为准（同样受 max_delay 限制）。
    """

    def __init__(self, max_attempts: int, base_delay: float = 0.5, max_delay: float = 8.0):
        # maxRetries 限定的是网络请求总次数，至少一次
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay

    def delay(self, retry_number: int, retry_after: float | None = None) -> float:
        if retry_after is not None:
            return min(self.max_delay, max(0.0, retry_after))
        backoff = min(self.max_delay, self.base_delay * 2 ** (retry_number - 1))
        return backoff * random.uniform(0.5, 1.0)


def parse_retry_after(headers: httpx.Headers) -> float | None:
    """解析数字形式的 Retry-After 头，HTTP日期格式忽略"""
    value = headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _upstream_message(body: bytes) -> str:
    """尽量从后端错误体中提取错误消息"""
    parsed = decode_body(body)
    if isinstance(parsed, list) and parsed:
        parsed = parsed[0]
    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    text = parsed if isinstance(parsed, str) else json.dumps(parsed, ensure_ascii=False)
    return text[:500]


def classify_response(status_code: int, headers: httpx.Headers, body: bytes) -> BackendError:
    """根据HTTP状态码构造后端错误，429与5xx可重试"""
    message = _upstream_message(body)
    if status_code == 429 or status_code >= 500:
        return TransientBackendError(
            message,
            status_code=status_code,
            retry_after=parse_retry_after(headers),
        )
    return BackendError(message, status_code=status_code)


class BackendInvoker:
    """供应商后端调用器

    自己持有一个直连网络的 httpx.AsyncClient，不经过拦截层。
    """

    def __init__(
        self,
        config: BridgeConfig,
        trace_logger: TraceLogger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout: httpx.Timeout | None = None,
    ):
        self.config = config
        self.trace_logger = trace_logger or TraceLogger(None)
        self.retry_policy = retry_policy or RetryPolicy(config.max_retries)
        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=timeout or httpx.Timeout(600.0, connect=10.0),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def ensure_credentials(self) -> None:
        """
        在任何网络请求之前检查API密钥

        Raises:
            ConfigurationError: 缺少API密钥
        """
        if not self.config.api_key:
            raise ConfigurationError(
                f"API key for provider {self.config.provider.value} is missing"
            )

    def _provider_name(self) -> str:
        return self.config.provider.value if self.config.provider else "backend"

    async def _backoff(
        self, invocation: Invocation, error: TransientBackendError, bound_logger
    ) -> None:
        invocation.transition(InvocationState.RETRYING)
        delay = self.retry_policy.delay(invocation.attempts, error.retry_after)
        bound_logger.warning(
            f"后端请求失败，准备重试 - Attempt: {invocation.attempts}/{self.retry_policy.max_attempts}, "
            f"Status: {error.status_code}, Delay: {delay:.2f}s, Error: {error}"
        )
        await asyncio.sleep(delay)

    def _fail(self, invocation: Invocation, error: BridgeError, bound_logger) -> str:
        invocation.transition(InvocationState.FAILED)
        description = describe_backend_error(self._provider_name(), error)
        bound_logger.error(
            f"后端请求失败 - Attempts: {invocation.attempts}, Error: {description}"
        )
        return description

    def _record_provider_in(self, request_id: str, status_code: int | None, body, attempt: int) -> None:
        self.trace_logger.record(
            request_id,
            Direction.PROVIDER_IN,
            body,
            status_code=status_code,
            attempt=attempt,
        )

    @staticmethod
    def _parse_success(adapter, response: httpx.Response, model: str) -> WireResponse:
        try:
            payload = response.json()
        except json.JSONDecodeError as e:
            raise BackendError(
                f"response is not valid JSON: {e}", status_code=response.status_code
            ) from e
        return adapter.to_wire(payload, model)

    async def send(self, request: TranslatedRequest, request_id: str = None) -> WireResponse:
        """
        发送非流式请求

        Args:
            request: 已转换的供应商请求
            request_id: 事务ID

        Returns:
            WireResponse: 成功时为转换后的响应，失败时为停止原因为error的响应

        Raises:
            ConfigurationError: 缺少API密钥（不发起任何网络请求）
        """
        self.ensure_credentials()
        bound_logger = get_logger_with_request_id(request_id)
        adapter = get_adapter(request.provider)
        invocation = Invocation(request_id)

        while True:
            invocation.transition(InvocationState.SENT)
            try:
                response = await self._client.post(
                    request.url, headers=request.headers, json=request.body
                )
            except httpx.TransportError as e:
                error: BackendError = TransientBackendError(
                    f"{type(e).__name__}: {e}"
                )
                self._record_provider_in(request_id, None, str(error), invocation.attempts)
            else:
                self._record_provider_in(
                    request_id, response.status_code, decode_body(response.content), invocation.attempts
                )
                if response.status_code < 400:
                    try:
                        wire_response = self._parse_success(adapter, response, request.model)
                    except BackendError as e:
                        error = e
                    else:
                        invocation.transition(InvocationState.SUCCEEDED)
                        bound_logger.info(
                            f"后端请求成功 - Attempts: {invocation.attempts}, "
                            f"stop_reason: {wire_response.stop_reason.value}"
                        )
                        return wire_response
                else:
                    error = classify_response(
                        response.status_code, response.headers, response.content
                    )

            if (
                isinstance(error, TransientBackendError)
                and invocation.attempts < self.retry_policy.max_attempts
            ):
                await self._backoff(invocation, error, bound_logger)
                continue

            description = self._fail(invocation, error, bound_logger)
            return build_error_response(description, request.model)

    async def stream(
        self, request: TranslatedRequest, request_id: str = None
    ) -> AsyncIterator[StreamDelta]:
        """
        发送流式请求，逐个产出流式增量

        只在收到成功的响应头之前重试；数据开始流动之后的断开不重试，
        以 ErrorDelta 结束。关闭本生成器会立即关闭上游连接。

        Raises:
            ConfigurationError: 缺少API密钥（不发起任何网络请求）
        """
        self.ensure_credentials()
        bound_logger = get_logger_with_request_id(request_id)
        adapter = get_adapter(request.provider)
        invocation = Invocation(request_id)

        while True:
            invocation.transition(InvocationState.SENT)
            try:
                async with self._client.stream(
                    "POST", request.url, headers=request.headers, json=request.body
                ) as response:
                    if response.status_code >= 400:
                        body = await response.aread()
                        self._record_provider_in(
                            request_id, response.status_code, decode_body(body), invocation.attempts
                        )
                        error: BackendError = classify_response(
                            response.status_code, response.headers, body
                        )
                    else:
                        invocation.transition(InvocationState.SUCCEEDED)
                        raw_lines: list[str] = []
                        try:
                            async with aclosing(
                                self._iter_lines(response, raw_lines)
                            ) as lines, aclosing(
                                adapter.parse_stream(lines, request.model)
                            ) as deltas:
                                async for delta in deltas:
                                    yield delta
                        except (StreamInterruptedError, httpx.TransportError) as e:
                            bound_logger.warning(
                                f"后端流中断 - Error: {type(e).__name__}: {e}"
                            )
                            yield ErrorDelta(
                                message=f"{self._provider_name()} stream interrupted: {e}",
                                before_content=False,
                            )
                        finally:
                            self._record_provider_in(
                                request_id,
                                response.status_code,
                                "\n".join(raw_lines),
                                invocation.attempts,
                            )
                        return
            except httpx.TransportError as e:
                error = TransientBackendError(f"{type(e).__name__}: {e}")
                self._record_provider_in(request_id, None, str(error), invocation.attempts)

            if (
                isinstance(error, TransientBackendError)
                and invocation.attempts < self.retry_policy.max_attempts
            ):
                await self._backoff(invocation, error, bound_logger)
                continue

            description = self._fail(invocation, error, bound_logger)
            yield ErrorDelta(message=description, before_content=True)
            return

    @staticmethod
    async def _iter_lines(response: httpx.Response, sink: list[str]) -> AsyncIterator[str]:
        async for line in response.aiter_lines():
            sink.append(line)
            yield line
