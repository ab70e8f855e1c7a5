"""
供应商转换器基类

每个供应商实现一个适配器：角色映射表、停止原因映射表、
端点与请求头构造，以及 from_wire / to_wire / parse_stream 三个转换操作。
新增供应商只需新增一个适配器并在映射表中登记一行。
"""

import json
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from claude_bridge.common.logging import get_logger_with_request_id
from claude_bridge.config.settings import BridgeConfig, Provider
from claude_bridge.models.errors import TranslationError
from claude_bridge.models.wire import (
    ContentBlock,
    Role,
    StopReason,
    StreamDelta,
    TextBlock,
    WireRequest,
    WireResponse,
)


@dataclass
class TranslatedRequest:
    """可直接发送的供应商请求"""

    provider: Provider
    url: str
    headers: dict[str, str]
    body: dict[str, Any]
    stream: bool
    model: str
    warnings: list[str] = field(default_factory=list)


class TranslationContext:
    """一次转换过程中被丢弃或强制转换的字段记录"""

    def __init__(self, request_id: str | None = None):
        self.request_id = request_id
        self.warnings: list[str] = []
        self._logger = get_logger_with_request_id(request_id)

    def drop(self, error: TranslationError) -> None:
        """记录一个无法表示的字段，转换继续"""
        self.warnings.append(str(error))
        self._logger.warning(f"字段无法转换，已丢弃 - {error}")


def safe_json_parse(json_str: str | None) -> dict[str, Any]:
    """
    安全地解析工具参数JSON字符串

    Args:
        json_str: 待解析的JSON字符串

    Returns:
        解析后的字典对象，解析失败时返回空字典
    """
    if not json_str:
        return {}

    try:
        parsed = json.loads(json_str)
    except json.JSONDecodeError:
        try:
            # 尝试处理单引号问题：将单引号替换为双引号
            parsed = json.loads(json_str.replace("'", '"'))
        except json.JSONDecodeError as e:
            from loguru import logger

            logger.warning(
                f"JSON解析失败，使用空字典 - Error: {e}, Content: {json_str[:100]}..."
            )
            return {}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def merge_text_blocks(content: list[ContentBlock]) -> list[ContentBlock]:
    """合并相邻的文本块，与流式编码时连续文本增量写入同一个块的结果一致"""
    merged: list[ContentBlock] = []
    for block in content:
        if isinstance(block, TextBlock) and merged and isinstance(merged[-1], TextBlock):
            merged[-1] = TextBlock(text=merged[-1].text + block.text)
        else:
            merged.append(block)
    return merged


def generate_tool_use_id() -> str:
    return f"toolu_{uuid.uuid4().hex[:24]}"


def generate_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:24]}"


class ProviderAdapter(ABC):
    """供应商适配器"""

    provider: Provider
    # 角色名称映射表，必须显式列出，不做推断
    role_map: dict[Role, str]
    # 后端完成原因到停止原因的映射表
    stop_reason_map: dict[str, StopReason]

    def map_stop_reason(self, raw: str | None) -> StopReason:
        if raw is None:
            return StopReason.END_TURN
        return self.stop_reason_map.get(raw, StopReason.END_TURN)

    def map_role(self, role: Role) -> str:
        return self.role_map[role]

    @abstractmethod
    def endpoint(self, config: BridgeConfig, stream: bool) -> str:
        """请求地址"""

    @abstractmethod
    def headers(self, config: BridgeConfig) -> dict[str, str]:
        """认证与内容类型请求头"""

    @abstractmethod
    def from_wire(
        self, request: WireRequest, config: BridgeConfig, ctx: TranslationContext
    ) -> dict[str, Any]:
        """中间表示请求 -> 供应商请求体"""

    @abstractmethod
    def to_wire(self, body: dict[str, Any], model: str) -> WireResponse:
        """供应商非流式响应体 -> 中间表示响应"""

    @abstractmethod
    def parse_stream(
        self, lines: AsyncIterator[str], model: str
    ) -> AsyncIterator[StreamDelta]:
        """供应商SSE行 -> 与供应商无关的流式增量

        后端未发出完成信号就结束时抛出 StreamInterruptedError。
        """

    def build_request(
        self, request: WireRequest, config: BridgeConfig, ctx: TranslationContext
    ) -> TranslatedRequest:
        body = self.from_wire(request, config, ctx)
        return TranslatedRequest(
            provider=self.provider,
            url=self.endpoint(config, request.stream),
            headers=self.headers(config),
            body=body,
            stream=request.stream,
            model=config.model,
            warnings=ctx.warnings,
        )
