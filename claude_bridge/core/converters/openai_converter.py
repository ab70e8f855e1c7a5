"""
OpenAI Chat Completions 转换器

中间表示 <-> OpenAI 请求/响应/流式分块。
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
from claude_bridge.models.openai import (
    OpenAIMessage,
    OpenAIMessageContent,
    OpenAIRequest,
    OpenAIResponse,
    OpenAIStreamResponse,
    OpenAITool,
    OpenAIToolCall,
    OpenAIToolCallFunction,
    OpenAIToolFunction,
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
    WireTurn,
    resolve_stop_reason,
)

from .base import (
    ProviderAdapter,
    TranslationContext,
    generate_message_id,
    generate_tool_use_id,
    merge_text_blocks,
    safe_json_parse,
)


class OpenAIAdapter(ProviderAdapter):
    """OpenAI 适配器"""

    provider = Provider.OPENAI
    role_map = {
        Role.USER: "user",
        Role.ASSISTANT: "assistant",
    }
    stop_reason_map = {
        "stop": StopReason.END_TURN,
        "length": StopReason.MAX_TOKENS,
        "tool_calls": StopReason.TOOL_USE,
        "function_call": StopReason.TOOL_USE,
        "content_filter": StopReason.STOP_SEQUENCE,
    }

    def endpoint(self, config: BridgeConfig, stream: bool) -> str:
        return f"{config.resolved_base_url}/chat/completions"

    def headers(self, config: BridgeConfig) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }

    # ---- 请求 ----

    def from_wire(
        self, request: WireRequest, config: BridgeConfig, ctx: TranslationContext
    ) -> dict[str, Any]:
        """
        将中间表示请求转换为OpenAI格式请求

        Args:
            request: 中间表示请求
            config: 桥接配置（提供目标模型）
            ctx: 转换上下文，记录被丢弃的字段

        Returns:
            OpenAI请求体字典
        """
        messages = self._convert_messages(request, ctx)
        tools = self._convert_tools(request.tools)

        if request.top_k is not None:
            ctx.drop(TranslationError("top_k", "not supported by OpenAI chat completions"))
        if request.thinking is not None:
            ctx.drop(TranslationError("thinking", "not supported by OpenAI chat completions"))

        user = None
        if request.metadata:
            user = request.metadata.get("user_id")
            other_keys = sorted(k for k in request.metadata if k != "user_id")
            if other_keys:
                ctx.drop(
                    TranslationError(f"metadata.{','.join(other_keys)}", "no OpenAI equivalent")
                )

        parallel_tool_calls = None
        tool_choice = None
        if request.tool_choice is not None:
            tool_choice = self._convert_tool_choice(request.tool_choice)
            if request.tool_choice.disable_parallel_tool_use:
                parallel_tool_calls = False

        openai_request = OpenAIRequest(
            model=config.model,
            messages=messages,
            max_tokens=request.max_tokens,
            temperature=request.temperature,
            top_p=request.top_p,
            stream=request.stream,
            stream_options={"include_usage": True} if request.stream else None,
            stop=request.stop_sequences,
            tools=tools,
            tool_choice=tool_choice if tools else None,
            parallel_tool_calls=parallel_tool_calls if tools else None,
            user=user,
        )
        return openai_request.model_dump(exclude_none=True)

    def _convert_messages(
        self, request: WireRequest, ctx: TranslationContext
    ) -> list[OpenAIMessage]:
        messages = []

        # 每个system文本块对应一条system消息
        for system_text in request.system or []:
            messages.append(OpenAIMessage(role="system", content=system_text))

        for index, turn in enumerate(request.messages):
            if turn.role == Role.ASSISTANT:
                messages.append(self._convert_assistant_turn(turn, index, ctx))
            else:
                messages.extend(self._convert_user_turn(turn, index, ctx))

        return messages

    def _convert_assistant_turn(
        self, turn: WireTurn, index: int, ctx: TranslationContext
    ) -> OpenAIMessage:
        text_parts: list[str] = []
        tool_calls: list[OpenAIToolCall] = []

        for block_index, block in enumerate(turn.content):
            if isinstance(block, TextBlock):
                text_parts.append(block.text)
            elif isinstance(block, ToolUseBlock):
                tool_calls.append(
                    OpenAIToolCall(
                        id=block.id,
                        function=OpenAIToolCallFunction(
                            name=block.name,
                            arguments=json.dumps(block.input, ensure_ascii=False),
                        ),
                    )
                )
            else:
                ctx.drop(
                    TranslationError(
                        f"messages[{index}].content[{block_index}]",
                        f"{block.type} blocks are not allowed in assistant messages",
                    )
                )

        content: str | list[OpenAIMessageContent] | None
        if len(text_parts) == 1:
            content = text_parts[0]
        elif text_parts:
            content = [OpenAIMessageContent(type="text", text=text) for text in text_parts]
        else:
            content = None if tool_calls else ""

        return OpenAIMessage(
            role=self.map_role(turn.role),
            content=content,
            tool_calls=tool_calls or None,
        )

    def _convert_user_turn(
        self, turn: WireTurn, index: int, ctx: TranslationContext
    ) -> list[OpenAIMessage]:
        """按块的原始顺序转换：tool_result变为独立的tool消息，其余内容合并为user消息"""
        messages: list[OpenAIMessage] = []
        pending: list[OpenAIMessageContent] = []

        def flush() -> None:
            if not pending:
                return
            if len(pending) == 1 and pending[0].type == "text":
                content = pending[0].text
            else:
                content = list(pending)
            messages.append(OpenAIMessage(role=self.map_role(turn.role), content=content))
            pending.clear()

        for block_index, block in enumerate(turn.content):
            field_name = f"messages[{index}].content[{block_index}]"
            if isinstance(block, TextBlock):
                pending.append(OpenAIMessageContent(type="text", text=block.text))
            elif isinstance(block, ImageBlock):
                pending.append(
                    OpenAIMessageContent(type="image_url", image_url={"url": self._image_url(block)})
                )
            elif isinstance(block, ToolResultBlock):
                flush()
                messages.append(self._convert_tool_result(block, field_name, ctx))
            else:
                ctx.drop(
                    TranslationError(field_name, f"{block.type} blocks are not allowed in user messages")
                )

        flush()
        return messages

    def _convert_tool_result(
        self, block: ToolResultBlock, field_name: str, ctx: TranslationContext
    ) -> OpenAIMessage:
        if not isinstance(block.content, str) and any(
            isinstance(part, ImageBlock) for part in block.content
        ):
            ctx.drop(TranslationError(f"{field_name}.content", "images in tool results are not supported"))

        content = block.text_content()
        if block.is_error:
            content = f"Error: {content}"
        return OpenAIMessage(role="tool", content=content, tool_call_id=block.tool_use_id)

    @staticmethod
    def _image_url(block: ImageBlock) -> str:
        if block.url:
            return block.url
        return f"data:{block.media_type};base64,{block.data}"

    @staticmethod
    def _convert_tools(tools: list[WireTool] | None) -> list[OpenAITool] | None:
        """
        将工具定义转换为OpenAI工具格式

        Args:
            tools: 中间表示的工具定义列表

        Returns:
            OpenAI格式的工具列表或None
        """
        if not tools:
            return None

        return [
            OpenAITool(
                type="function",
                function=OpenAIToolFunction(
                    name=tool.name,
                    description=tool.description,
                    parameters=tool.input_schema,
                ),
            )
            for tool in tools
        ]

    @staticmethod
    def _convert_tool_choice(tool_choice: ToolChoice) -> str | dict[str, Any]:
        """
        转换tool_choice到OpenAI格式

        Args:
            tool_choice: 中间表示的tool_choice

        Returns:
            OpenAI格式的tool_choice
        """
        if tool_choice.type == "any":
            return "required"
        if tool_choice.type == "none":
            return "none"
        if tool_choice.type == "tool" and tool_choice.name:
            return {"type": "function", "function": {"name": tool_choice.name}}
        return "auto"

    # ---- 响应 ----

    def to_wire(self, body: dict[str, Any], model: str) -> WireResponse:
        """
        将OpenAI非流式响应转换为中间表示

        Args:
            body: OpenAI响应字典
            model: 后端未返回模型名时使用的模型ID

        Returns:
            WireResponse: 中间表示响应
        """
        try:
            response = OpenAIResponse.model_validate(body)
        except ValidationError as e:
            raise BackendError(f"OpenAI响应格式无效: {e}") from e

        if not response.choices:
            raise BackendError("OpenAI响应没有有效的choices")

        # 使用第一个choice作为主要响应
        choice = response.choices[0]
        content = []
        message = choice.message
        if message is not None:
            if message.content:
                content.append(TextBlock(text=message.content))
            if message.refusal:
                content.append(TextBlock(text=message.refusal))
            for tool_call in message.tool_calls or []:
                content.append(
                    ToolUseBlock(
                        id=tool_call.id or generate_tool_use_id(),
                        name=tool_call.function.name or "",
                        input=safe_json_parse(tool_call.function.arguments),
                    )
                )

        content = merge_text_blocks(content)
        has_tool_use = any(isinstance(block, ToolUseBlock) for block in content)
        stop_reason = resolve_stop_reason(
            self.map_stop_reason(choice.finish_reason), has_tool_use
        )

        usage = Usage()
        if response.usage is not None:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
            )

        return WireResponse(
            id=response.id or generate_message_id(),
            model=response.model or model,
            stop_reason=stop_reason,
            content=content,
            usage=usage,
        )

    async def parse_stream(
        self, lines: AsyncIterator[str], model: str
    ) -> AsyncIterator[StreamDelta]:
        """将OpenAI SSE分块解析为流式增量"""
        started = False
        finished = False

        async for line in lines:
            if not line.startswith("data:"):
                continue

            data = line[5:].strip()
            if data == "[DONE]":
                break

            try:
                chunk_data = json.loads(data)
            except json.JSONDecodeError as parse_error:
                logger.error(
                    f"Parse error - Error: {str(parse_error.args[0])}, Data: {data[:100]}"
                )
                continue

            # 流中途的错误对象
            if "error" in chunk_data:
                raise StreamInterruptedError(
                    f"OpenAI stream error: {json.dumps(chunk_data['error'], ensure_ascii=False)}"
                )

            chunk = OpenAIStreamResponse.model_validate(chunk_data)

            if not started:
                started = True
                yield MessageInfoDelta(
                    id=chunk.id or generate_message_id(), model=chunk.model or model
                )

            for choice in chunk.choices[:1]:
                delta = choice.delta
                if delta is not None:
                    if delta.content:
                        yield TextDelta(text=delta.content)
                    if delta.refusal:
                        yield TextDelta(text=delta.refusal)
                    for position, tool_call in enumerate(delta.tool_calls or []):
                        function = tool_call.function or OpenAIToolCallFunction()
                        yield ToolCallDelta(
                            index=tool_call.index if tool_call.index is not None else position,
                            id=tool_call.id,
                            name=function.name,
                            arguments=function.arguments or "",
                        )

                if choice.finish_reason:
                    finished = True
                    yield FinishDelta(stop_reason=self.map_stop_reason(choice.finish_reason))

            # include_usage时usage在完成信号之后单独一块
            if chunk.usage is not None:
                yield UsageDelta(
                    usage=Usage(
                        input_tokens=chunk.usage.prompt_tokens,
                        output_tokens=chunk.usage.completion_tokens,
                    )
                )

        if not finished:
            raise StreamInterruptedError("OpenAI stream ended without a finish_reason")
