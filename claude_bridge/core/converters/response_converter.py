"""
中间表示到原生响应的转换器

实现将 WireResponse 转换为原生消息响应，以及后端失败时的错误形响应。
"""

from claude_bridge.common.logging import get_logger_with_request_id
from claude_bridge.models.anthropic import (
    AnthropicContentBlock,
    AnthropicContentTypes,
    AnthropicMessageResponse,
    AnthropicUsage,
)
from claude_bridge.models.errors import BackendError, BridgeError, TransientBackendError
from claude_bridge.models.wire import (
    StopReason,
    TextBlock,
    ToolUseBlock,
    Usage,
    WireResponse,
)

from .base import generate_message_id


class WireToNativeConverter:
    """中间表示响应到原生格式的转换器"""

    @staticmethod
    def convert_response(
        response: WireResponse, request_id: str = None
    ) -> AnthropicMessageResponse:
        """
        将中间表示响应转换为原生格式

        Args:
            response: 中间表示响应
            request_id: 事务ID用于日志追踪

        Returns:
            AnthropicMessageResponse: 原生格式响应
        """
        bound_logger = get_logger_with_request_id(request_id)

        content = []
        for block in response.content:
            if isinstance(block, TextBlock):
                # 空文本块不输出，与流式路径保持一致
                if block.text:
                    content.append(
                        AnthropicContentBlock(type=AnthropicContentTypes.TEXT, text=block.text)
                    )
            elif isinstance(block, ToolUseBlock):
                content.append(
                    AnthropicContentBlock(
                        type=AnthropicContentTypes.TOOL_USE,
                        id=block.id,
                        name=block.name,
                        input=block.input,
                    )
                )
            else:
                bound_logger.warning(f"响应中的内容块无法表示，已丢弃 - type: {block.type}")

        native_response = AnthropicMessageResponse(
            id=response.id,
            model=response.model,
            content=content,
            stop_reason=response.stop_reason.value,
            stop_sequence=response.stop_sequence,
            usage=AnthropicUsage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            ),
        )

        bound_logger.debug(
            f"响应转换完成 - stop_reason: {native_response.stop_reason}, "
            f"blocks: {len(content)}, usage: {response.usage.input_tokens}/{response.usage.output_tokens}"
        )
        return native_response


def describe_backend_error(provider: str, error: BridgeError) -> str:
    """生成写入错误内容块的说明文字：供应商、状态码、上游消息"""
    if isinstance(error, BackendError) and error.status_code is not None:
        description = f"{provider} backend error (HTTP {error.status_code}): {error}"
    else:
        description = f"{provider} backend error: {error}"

    if isinstance(error, BackendError) and error.body:
        description += f" - {error.body[:500]}"
    if isinstance(error, TransientBackendError):
        description += " (retries exhausted)"
    return description


def build_error_response(message: str, model: str) -> WireResponse:
    """
    构造停止原因为error的响应，包含一个描述失败原因的文本块

    Args:
        message: 错误说明
        model: 模型ID

    Returns:
        WireResponse: 错误形响应
    """
    return WireResponse(
        id=generate_message_id(),
        model=model,
        stop_reason=StopReason.ERROR,
        content=[TextBlock(text=message)],
        usage=Usage(),
    )
