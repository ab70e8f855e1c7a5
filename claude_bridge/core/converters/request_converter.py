"""
原生请求转换器

该模块把捕获到的原生请求体解析为中间表示，再交给供应商适配器生成目标请求。
只校验结构，不校验会话一致性（例如 tool_result 引用的 tool_use 是否存在）。
"""

import json
from functools import lru_cache
from typing import Any

from loguru import logger
from pydantic import ValidationError

from claude_bridge.common.logging import get_logger_with_request_id
from claude_bridge.config.registry import find_model_capabilities
from claude_bridge.config.settings import BridgeConfig
from claude_bridge.models.anthropic import (
    AnthropicContentTypes,
    AnthropicCountTokensRequest,
    AnthropicMessageContent,
    AnthropicRequest,
    AnthropicSystemMessage,
    AnthropicToolDefinition,
)
from claude_bridge.models.errors import MalformedRequestError, TranslationError
from claude_bridge.models.wire import (
    ImageBlock,
    Role,
    TextBlock,
    ToolChoice,
    ToolResultBlock,
    ToolUseBlock,
    WireRequest,
    WireTool,
    WireTurn,
)

from .base import TranslatedRequest, TranslationContext
from .providers import get_adapter


class NativeRequestParser:
    """将原生请求体解析为中间表示"""

    @staticmethod
    def load_body(raw: bytes | str | dict[str, Any]) -> dict[str, Any]:
        """
        解码请求体

        Raises:
            MalformedRequestError: 请求体不是JSON对象
        """
        if isinstance(raw, dict):
            return raw
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedRequestError(f"request body is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise MalformedRequestError("request body must be a JSON object")
        return data

    @staticmethod
    def parse(
        raw: bytes | str | dict[str, Any], ctx: TranslationContext
    ) -> WireRequest:
        """
        解析原生消息请求

        Args:
            raw: 原生请求体
            ctx: 转换上下文

        Returns:
            WireRequest: 中间表示请求

        Raises:
            MalformedRequestError: 结构无效
        """
        data = NativeRequestParser.load_body(raw)
        try:
            request = AnthropicRequest.model_validate(data)
        except ValidationError as e:
            raise MalformedRequestError(f"invalid messages request: {e}") from e

        return WireRequest(
            model=request.model,
            system=NativeRequestParser._convert_system(request.system),
            messages=NativeRequestParser._convert_turns(request.messages, ctx),
            tools=NativeRequestParser._convert_tools(request.tools, ctx),
            tool_choice=NativeRequestParser._convert_tool_choice(request.tool_choice),
            max_tokens=request.max_tokens,
            stream=bool(request.stream),
            temperature=request.temperature,
            top_p=request.top_p,
            top_k=request.top_k,
            stop_sequences=request.stop_sequences,
            metadata=request.metadata,
            thinking=request.thinking,
        )

    @staticmethod
    def parse_count_tokens(
        raw: bytes | str | dict[str, Any], ctx: TranslationContext
    ) -> WireRequest:
        """解析count_tokens请求（没有max_tokens）"""
        data = NativeRequestParser.load_body(raw)
        try:
            request = AnthropicCountTokensRequest.model_validate(data)
        except ValidationError as e:
            raise MalformedRequestError(f"invalid count_tokens request: {e}") from e

        return WireRequest(
            model=request.model,
            system=NativeRequestParser._convert_system(request.system),
            messages=NativeRequestParser._convert_turns(request.messages, ctx),
            tools=NativeRequestParser._convert_tools(request.tools, ctx),
            max_tokens=1,
        )

    @staticmethod
    def _convert_system(
        system: str | list[AnthropicSystemMessage] | None,
    ) -> list[str] | None:
        if system is None:
            return None
        if isinstance(system, str):
            return [system] if system else None
        return [block.text for block in system]

    @staticmethod
    def _convert_turns(messages, ctx: TranslationContext) -> list[WireTurn]:
        turns = []
        for index, message in enumerate(messages):
            if isinstance(message.content, str):
                content = [TextBlock(text=message.content)]
            else:
                content = []
                for block_index, block in enumerate(message.content):
                    converted = NativeRequestParser._convert_block(
                        block, f"messages[{index}].content[{block_index}]", ctx
                    )
                    if converted is not None:
                        content.append(converted)
            turns.append(WireTurn(role=Role(message.role), content=content))
        return turns

    @staticmethod
    def _convert_block(
        block: AnthropicMessageContent, field_name: str, ctx: TranslationContext
    ):
        """
        转换单个原生内容块

        Returns:
            中间表示内容块，无法表示时返回None（已记录警告）
        """
        if block.type == AnthropicContentTypes.TEXT:
            if block.text is None:
                raise MalformedRequestError(f"{field_name}: text block without text")
            return TextBlock(text=block.text)

        if block.type == AnthropicContentTypes.IMAGE:
            return NativeRequestParser._convert_image(block.source, field_name, ctx)

        if block.type == AnthropicContentTypes.TOOL_USE:
            if not block.id or not block.name:
                raise MalformedRequestError(f"{field_name}: tool_use block requires id and name")
            return ToolUseBlock(id=block.id, name=block.name, input=block.input or {})

        if block.type == AnthropicContentTypes.TOOL_RESULT:
            if not block.tool_use_id:
                raise MalformedRequestError(f"{field_name}: tool_result block requires tool_use_id")
            return ToolResultBlock(
                tool_use_id=block.tool_use_id,
                content=NativeRequestParser._convert_tool_result_content(
                    block.content, field_name, ctx
                ),
                is_error=bool(block.is_error),
            )

        ctx.drop(TranslationError(field_name, f"{block.type} blocks cannot be bridged"))
        return None

    @staticmethod
    def _convert_image(
        source: dict[str, Any] | None, field_name: str, ctx: TranslationContext
    ) -> ImageBlock | None:
        if not source:
            raise MalformedRequestError(f"{field_name}: image block requires a source")
        source_type = source.get("type")
        if source_type == "base64":
            return ImageBlock(media_type=source.get("media_type"), data=source.get("data"))
        if source_type == "url":
            return ImageBlock(url=source.get("url"))
        ctx.drop(TranslationError(f"{field_name}.source", f"unsupported image source {source_type!r}"))
        return None

    @staticmethod
    def _convert_tool_result_content(
        content: str | list[dict[str, Any]] | None,
        field_name: str,
        ctx: TranslationContext,
    ) -> str | list[TextBlock | ImageBlock]:
        if content is None:
            return ""
        if isinstance(content, str):
            return content

        parts: list[TextBlock | ImageBlock] = []
        for part_index, part in enumerate(content):
            part_field = f"{field_name}.content[{part_index}]"
            part_type = part.get("type")
            if part_type == AnthropicContentTypes.TEXT:
                parts.append(TextBlock(text=part.get("text") or ""))
            elif part_type == AnthropicContentTypes.IMAGE:
                image = NativeRequestParser._convert_image(part.get("source"), part_field, ctx)
                if image is not None:
                    parts.append(image)
            else:
                ctx.drop(TranslationError(part_field, f"{part_type} parts cannot be bridged"))
        return parts

    @staticmethod
    def _convert_tools(
        tools: list[AnthropicToolDefinition] | None, ctx: TranslationContext
    ) -> list[WireTool] | None:
        if not tools:
            return None

        wire_tools = []
        for tool in tools:
            # 服务端工具（web_search等）只有原生后端能执行
            if tool.type and tool.type != "custom":
                ctx.drop(TranslationError(f"tools.{tool.name}", f"server tool type {tool.type}"))
                continue

            if tool.input_schema is None:
                ctx.drop(
                    TranslationError(
                        f"tools.{tool.name}.input_schema", "missing, coerced to an empty object schema"
                    )
                )
                wire_tools.append(WireTool(name=tool.name, description=tool.description))
                continue

            wire_tools.append(
                WireTool(name=tool.name, description=tool.description, input_schema=tool.input_schema)
            )

        return wire_tools or None

    @staticmethod
    def _convert_tool_choice(tool_choice: dict[str, Any] | None) -> ToolChoice | None:
        if tool_choice is None:
            return None
        try:
            return ToolChoice.model_validate(tool_choice)
        except ValidationError as e:
            raise MalformedRequestError(f"invalid tool_choice: {e}") from e


def clamp_max_tokens(request: WireRequest, config: BridgeConfig, request_id: str = None) -> WireRequest:
    """按 maxOutputTokens 上限截断输出token数量"""
    cap = config.max_output_tokens
    if cap is None or request.max_tokens <= cap:
        return request

    get_logger_with_request_id(request_id).info(
        f"max_tokens已截断 - requested: {request.max_tokens}, cap: {cap}"
    )
    return request.model_copy(update={"max_tokens": cap})


@lru_cache(maxsize=None)
def _warn_unknown_model(model: str) -> None:
    # 每个未知模型只警告一次
    logger.warning(f"模型能力未知，转换照常进行 - model: {model}")


def check_capabilities(request: WireRequest, config: BridgeConfig, request_id: str = None) -> None:
    """根据能力注册表输出警告，不阻止请求"""
    capabilities = find_model_capabilities(config.model)
    if capabilities is None:
        _warn_unknown_model(config.model)
        return

    bound_logger = get_logger_with_request_id(request_id)
    if request.max_tokens > capabilities.max_output_tokens:
        bound_logger.warning(
            f"max_tokens超过模型上限 - model: {config.model}, "
            f"requested: {request.max_tokens}, limit: {capabilities.max_output_tokens}"
        )
    if request.tools and not capabilities.supports_tools:
        bound_logger.warning(f"模型不支持工具调用 - model: {config.model}")
    if request.has_images() and not capabilities.supports_image_input:
        bound_logger.warning(f"模型不支持图像输入 - model: {config.model}")


def translate_request(
    native_body: bytes | str | dict[str, Any],
    config: BridgeConfig,
    request_id: str = None,
) -> tuple[WireRequest, TranslatedRequest]:
    """
    将原生请求体转换为可发送的供应商请求

    Args:
        native_body: 捕获到的原生请求体
        config: 桥接配置
        request_id: 事务ID用于日志追踪

    Returns:
        (中间表示请求, 供应商请求)

    Raises:
        MalformedRequestError: 原生请求结构无效
    """
    bound_logger = get_logger_with_request_id(request_id)
    ctx = TranslationContext(request_id)

    wire_request = NativeRequestParser.parse(native_body, ctx)
    wire_request = clamp_max_tokens(wire_request, config, request_id)
    check_capabilities(wire_request, config, request_id)

    adapter = get_adapter(config.provider)
    translated = adapter.build_request(wire_request, config, ctx)

    bound_logger.info(
        f"请求转换完成 - {wire_request.model} -> {config.provider.value}:{config.model}, "
        f"stream: {wire_request.stream}, dropped: {len(ctx.warnings)}"
    )
    bound_logger.debug(
        f"{config.provider.value} 请求体: {json.dumps(translated.body, ensure_ascii=False)}"
    )
    return wire_request, translated
