"""
Google Gemini generateContent 转换器

中间表示 <-> Gemini 请求/响应/流式分块。Gemini 的函数参数只接受
OpenAPI 子集，工具定义在这里按白名单裁剪。
"""

import json
from collections.abc import AsyncIterator
from typing import Any

from loguru import logger
from pydantic import ValidationError

from claude_bridge.config.settings import BridgeConfig, Provider
from claude_bridge.models.errors import (
    BackendError,
    StreamInterruptedError,
    TranslationError,
)
from claude_bridge.models.google import (
    GeminiContent,
    GeminiFunctionCall,
    GeminiFunctionCallingConfig,
    GeminiFunctionDeclaration,
    GeminiFunctionResponse,
    GeminiGenerationConfig,
    GeminiInlineData,
    GeminiPart,
    GeminiRequest,
    GeminiResponse,
    GeminiTool,
    GeminiToolConfig,
    GeminiUsageMetadata,
)
from claude_bridge.models.wire import (
    FinishDelta,
    ImageBlock,
    MessageInfoDelta,
    Role,
    StopReason,
    StreamDelta,
    TextBlock,
    TextDelta,
    ToolCallDelta,
    ToolChoice,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
    UsageDelta,
    WireRequest,
    WireResponse,
    WireTool,
    resolve_stop_reason,
)

from .base import (
    ProviderAdapter,
    TranslationContext,
    generate_message_id,
    generate_tool_use_id,
    merge_text_blocks,
)

# Gemini Schema 支持的关键字
SUPPORTED_SCHEMA_KEYS = {
    "type",
    "format",
    "title",
    "description",
    "nullable",
    "enum",
    "properties",
    "required",
    "items",
    "minItems",
    "maxItems",
    "minimum",
    "maximum",
    "anyOf",
}

# 字符串类型只支持这两种format
SUPPORTED_STRING_FORMATS = {"enum", "date-time"}


def coerce_schema(schema: Any, path: str, stripped: list[str]) -> Any:
    """
    将JSON Schema裁剪为Gemini支持的子集

    Args:
        schema: 原始schema
        path: 当前节点路径，用于警告信息
        stripped: 收集被移除的关键字路径

    Returns:
        裁剪后的schema
    """
    if not isinstance(schema, dict):
        return schema

    schema_type = schema.get("type")
    is_string = schema_type == "string" or (
        isinstance(schema_type, list) and "string" in schema_type
    )

    result: dict[str, Any] = {}
    for key, value in schema.items():
        key_path = f"{path}.{key}"

        if key == "type" and isinstance(value, list):
            # ["string", "null"] -> type: string, nullable: true
            types = [t for t in value if t != "null"]
            if "null" in value:
                result["nullable"] = True
            if len(types) > 1:
                stripped.append(key_path)
            if types:
                result["type"] = types[0]
        elif key == "const":
            result["enum"] = [value]
        elif key == "format":
            if is_string and value not in SUPPORTED_STRING_FORMATS:
                stripped.append(key_path)
            else:
                result["format"] = value
        elif key == "properties" and isinstance(value, dict):
            result["properties"] = {
                name: coerce_schema(prop, f"{key_path}.{name}", stripped)
                for name, prop in value.items()
            }
        elif key == "items":
            result["items"] = coerce_schema(value, key_path, stripped)
        elif key == "anyOf" and isinstance(value, list):
            result["anyOf"] = [
                coerce_schema(option, f"{key_path}[{i}]", stripped)
                for i, option in enumerate(value)
            ]
        elif key in SUPPORTED_SCHEMA_KEYS:
            result[key] = value
        else:
            stripped.append(key_path)

    return result


class GoogleAdapter(ProviderAdapter):
    """Google Gemini 适配器"""

    provider = Provider.GOOGLE
    role_map = {
        Role.USER: "user",
        Role.ASSISTANT: "model",
    }
    stop_reason_map = {
        "STOP": StopReason.END_TURN,
        "MAX_TOKENS": StopReason.MAX_TOKENS,
        "SAFETY": StopReason.STOP_SEQUENCE,
        "RECITATION": StopReason.STOP_SEQUENCE,
        "BLOCKLIST": StopReason.STOP_SEQUENCE,
        "PROHIBITED_CONTENT": StopReason.STOP_SEQUENCE,
        "SPII": StopReason.STOP_SEQUENCE,
        "LANGUAGE": StopReason.STOP_SEQUENCE,
        "OTHER": StopReason.STOP_SEQUENCE,
        "MALFORMED_FUNCTION_CALL": StopReason.ERROR,
    }

    def endpoint(self, config: BridgeConfig, stream: bool) -> str:
        base = f"{config.resolved_base_url}/models/{config.model}"
        if stream:
            return f"{base}:streamGenerateContent?alt=sse"
        return f"{base}:generateContent"

    def headers(self, config: BridgeConfig) -> dict[str, str]:
        return {
            "x-goog-api-key": config.api_key or "",
            "Content-Type": "application/json",
        }

    # ---- 请求 ----

    def from_wire(
        self, request: WireRequest, config: BridgeConfig, ctx: TranslationContext
    ) -> dict[str, Any]:
        """
        将中间表示请求转换为Gemini格式请求

        Args:
            request: 中间表示请求
            config: 桥接配置
            ctx: 转换上下文，记录被丢弃的字段

        Returns:
            Gemini请求体字典（模型名在URL中）
        """
        system_instruction = None
        if request.system:
            system_instruction = GeminiContent(
                parts=[GeminiPart(text=text) for text in request.system]
            )

        if request.metadata:
            ctx.drop(TranslationError("metadata", "no Gemini equivalent"))
        if request.thinking is not None:
            ctx.drop(TranslationError("thinking", "not supported by the Gemini bridge"))

        tools = self._convert_tools(request.tools, ctx)
        tool_config = None
        if request.tool_choice is not None and tools:
            tool_config = self._convert_tool_choice(request.tool_choice, ctx)

        gemini_request = GeminiRequest(
            contents=self._convert_contents(request, ctx),
            systemInstruction=system_instruction,
            tools=tools,
            toolConfig=tool_config,
            generationConfig=GeminiGenerationConfig(
                maxOutputTokens=request.max_tokens,
                temperature=request.temperature,
                topP=request.top_p,
                topK=request.top_k,
                stopSequences=request.stop_sequences,
            ),
        )
        return gemini_request.model_dump(exclude_none=True)

    def _convert_contents(
        self, request: WireRequest, ctx: TranslationContext
    ) -> list[GeminiContent]:
        contents = []
        # tool_use id -> 函数名，functionResponse 需要函数名
        tool_names: dict[str, str] = {}

        for index, turn in enumerate(request.messages):
            parts = []
            for block_index, block in enumerate(turn.content):
                field_name = f"messages[{index}].content[{block_index}]"
                part = self._convert_block(block, field_name, tool_names, ctx)
                if part is not None:
                    parts.append(part)

            if not parts:
                ctx.drop(TranslationError(f"messages[{index}]", "turn has no representable content"))
                continue

            contents.append(GeminiContent(role=self.map_role(turn.role), parts=parts))

        return contents

    def _convert_block(
        self,
        block,
        field_name: str,
        tool_names: dict[str, str],
        ctx: TranslationContext,
    ) -> GeminiPart | None:
        if isinstance(block, TextBlock):
            return GeminiPart(text=block.text)

        if isinstance(block, ImageBlock):
            if block.data is None:
                ctx.drop(TranslationError(field_name, "URL images are not supported by Gemini"))
                return None
            return GeminiPart(
                inlineData=GeminiInlineData(
                    mimeType=block.media_type or "image/png", data=block.data
                )
            )

        if isinstance(block, ToolUseBlock):
            tool_names[block.id] = block.name
            return GeminiPart(functionCall=GeminiFunctionCall(name=block.name, args=block.input))

        if isinstance(block, ToolResultBlock):
            if not isinstance(block.content, str) and any(
                isinstance(part, ImageBlock) for part in block.content
            ):
                ctx.drop(
                    TranslationError(f"{field_name}.content", "images in tool results are not supported")
                )
            # 未知id原样透传，不校验会话一致性
            name = tool_names.get(block.tool_use_id, block.tool_use_id)
            key = "error" if block.is_error else "content"
            return GeminiPart(
                functionResponse=GeminiFunctionResponse(
                    name=name, response={key: block.text_content()}
                )
            )

        ctx.drop(TranslationError(field_name, f"unsupported block type {block.type}"))
        return None

    @staticmethod
    def _convert_tools(
        tools: list[WireTool] | None, ctx: TranslationContext
    ) -> list[GeminiTool] | None:
        if not tools:
            return None

        declarations = []
        for tool in tools:
            stripped: list[str] = []
            parameters = coerce_schema(tool.input_schema, tool.name, stripped)
            if stripped:
                ctx.drop(
                    TranslationError(
                        f"tools.{tool.name}.input_schema",
                        f"unsupported schema keywords removed: {', '.join(stripped)}",
                    )
                )
            # 没有参数的函数不能带空的object schema
            if not parameters.get("properties"):
                parameters = None
            declarations.append(
                GeminiFunctionDeclaration(
                    name=tool.name, description=tool.description, parameters=parameters
                )
            )

        return [GeminiTool(functionDeclarations=declarations)]

    @staticmethod
    def _convert_tool_choice(
        tool_choice: ToolChoice, ctx: TranslationContext
    ) -> GeminiToolConfig:
        if tool_choice.disable_parallel_tool_use:
            ctx.drop(
                TranslationError("tool_choice.disable_parallel_tool_use", "no Gemini equivalent")
            )

        if tool_choice.type == "any":
            config = GeminiFunctionCallingConfig(mode="ANY")
        elif tool_choice.type == "none":
            config = GeminiFunctionCallingConfig(mode="NONE")
        elif tool_choice.type == "tool" and tool_choice.name:
            config = GeminiFunctionCallingConfig(
                mode="ANY", allowedFunctionNames=[tool_choice.name]
            )
        else:
            config = GeminiFunctionCallingConfig(mode="AUTO")
        return GeminiToolConfig(functionCallingConfig=config)

    # ---- 响应 ----

    @staticmethod
    def _usage(metadata: GeminiUsageMetadata | None) -> Usage:
        if metadata is None:
            return Usage()
        return Usage(
            input_tokens=metadata.promptTokenCount,
            output_tokens=metadata.candidatesTokenCount,
        )

    def to_wire(self, body: dict[str, Any], model: str) -> WireResponse:
        """
        将Gemini非流式响应转换为中间表示

        Args:
            body: Gemini响应字典
            model: 后端未返回模型版本时使用的模型ID

        Returns:
            WireResponse: 中间表示响应
        """
        try:
            response = GeminiResponse.model_validate(body)
        except ValidationError as e:
            raise BackendError(f"Gemini响应格式无效: {e}") from e

        content = []
        finish_reason = None
        if response.candidates:
            candidate = response.candidates[0]
            finish_reason = candidate.finishReason
            parts = candidate.content.parts if candidate.content else []
            for part in parts:
                if part.thought:
                    continue
                if part.text:
                    content.append(TextBlock(text=part.text))
                elif part.functionCall is not None:
                    content.append(
                        ToolUseBlock(
                            id=part.functionCall.id or generate_tool_use_id(),
                            name=part.functionCall.name,
                            input=part.functionCall.args,
                        )
                    )
        elif (response.model_extra or {}).get("promptFeedback"):
            # 提示被拦截，没有候选
            finish_reason = "SAFETY"

        content = merge_text_blocks(content)
        has_tool_use = any(isinstance(block, ToolUseBlock) for block in content)
        return WireResponse(
            id=response.responseId or generate_message_id(),
            model=response.modelVersion or model,
            stop_reason=resolve_stop_reason(self.map_stop_reason(finish_reason), has_tool_use),
            content=content,
            usage=self._usage(response.usageMetadata),
        )

    async def parse_stream(
        self, lines: AsyncIterator[str], model: str
    ) -> AsyncIterator[StreamDelta]:
        """将Gemini SSE分块解析为流式增量，函数调用总是完整到达"""
        started = False
        finished = False
        tool_index = 0

        async for line in lines:
            if not line.startswith("data:"):
                continue

            data = line[5:].strip()
            if not data:
                continue

            try:
                chunk_data = json.loads(data)
            except json.JSONDecodeError as parse_error:
                logger.error(
                    f"Parse error - Error: {str(parse_error.args[0])}, Data: {data[:100]}"
                )
                continue

            if "error" in chunk_data:
                raise StreamInterruptedError(
                    f"Gemini stream error: {json.dumps(chunk_data['error'], ensure_ascii=False)}"
                )

            chunk = GeminiResponse.model_validate(chunk_data)

            if not started:
                started = True
                yield MessageInfoDelta(
                    id=chunk.responseId or generate_message_id(),
                    model=chunk.modelVersion or model,
                )

            for candidate in chunk.candidates[:1]:
                parts = candidate.content.parts if candidate.content else []
                for part in parts:
                    if part.thought:
                        continue
                    if part.text:
                        yield TextDelta(text=part.text)
                    elif part.functionCall is not None:
                        yield ToolCallDelta(
                            index=tool_index,
                            id=part.functionCall.id or generate_tool_use_id(),
                            name=part.functionCall.name,
                            arguments=json.dumps(part.functionCall.args, ensure_ascii=False),
                        )
                        tool_index += 1

                if candidate.finishReason:
                    finished = True
                    yield FinishDelta(stop_reason=self.map_stop_reason(candidate.finishReason))

            # 每个分块都可能带累计的usage，编码器保留最后一次
            if chunk.usageMetadata is not None:
                yield UsageDelta(usage=self._usage(chunk.usageMetadata))

        if not finished:
            raise StreamInterruptedError("Gemini stream ended without a finishReason")
