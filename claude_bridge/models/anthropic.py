"""原生协议（Anthropic Messages API）数据模型定义"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class AnthropicStreamEventTypes:
    """原生流式响应事件类型常量"""

    # 消息相关事件
    MESSAGE_START = "message_start"
    MESSAGE_DELTA = "message_delta"
    MESSAGE_STOP = "message_stop"

    # 内容块相关事件
    CONTENT_BLOCK_START = "content_block_start"
    CONTENT_BLOCK_DELTA = "content_block_delta"
    CONTENT_BLOCK_STOP = "content_block_stop"

    # 其他事件
    PING = "ping"
    ERROR = "error"


class AnthropicContentTypes:
    """原生内容类型常量"""

    # 基础内容类型
    TEXT = "text"
    IMAGE = "image"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    THINKING = "thinking"
    REDACTED_THINKING = "redacted_thinking"

    # 增量类型
    TEXT_DELTA = "text_delta"
    INPUT_JSON_DELTA = "input_json_delta"


class AnthropicMessageTypes:
    """原生消息类型常量"""

    MESSAGE = "message"
    ERROR = "error"


class AnthropicRoles:
    """原生角色常量"""

    USER = "user"
    ASSISTANT = "assistant"


class AnthropicMessageContent(BaseModel):
    """原生消息内容项

    type保持为字符串：客户端可能发送桥接层不认识的内容类型，
    这些类型在转换时被丢弃并记录警告，而不是让整个请求解析失败。
    """

    model_config = ConfigDict(extra="allow")

    type: str = Field(description="内容类型")
    text: str | None = Field(None, description="文本内容（当type为text时）")
    source: dict[str, Any] | None = Field(None, description="当type为image时的源信息")
    id: str | None = Field(None, description="工具调用ID（当type为tool_use时）")
    name: str | None = Field(None, description="工具名称（当type为tool_use时）")
    input: dict[str, Any] | None = Field(
        None, description="工具输入参数（当type为tool_use时）"
    )
    tool_use_id: str | None = Field(
        None, description="工具使用ID（当type为tool_result时）"
    )
    content: str | list[dict[str, Any]] | None = Field(
        None, description="工具结果内容（当type为tool_result时）"
    )
    is_error: bool | None = Field(
        None, description="工具调用是否为错误结果（当type为tool_result时）"
    )


class AnthropicMessage(BaseModel):
    """原生消息格式"""

    role: Literal["user", "assistant"] = Field(description="消息角色")
    content: str | list[AnthropicMessageContent] = Field(description="消息内容")


class AnthropicSystemMessage(BaseModel):
    """原生系统消息"""

    model_config = ConfigDict(extra="allow")

    type: Literal["text"] = Field(
        default=AnthropicContentTypes.TEXT, description="系统消息类型，固定为text"
    )
    text: str = Field(description="系统消息文本内容")


class AnthropicToolDefinition(BaseModel):
    """原生工具定义"""

    model_config = ConfigDict(extra="allow")

    name: str = Field(description="工具名称")
    description: str | None = Field(None, description="工具描述")
    input_schema: dict[str, Any] | None = Field(
        None, description="JSON Schema格式的输入参数定义"
    )
    type: str | None = Field(None, description="服务端工具类型")


class AnthropicRequest(BaseModel):
    """原生API请求模型"""

    model_config = ConfigDict(extra="allow")

    model: str = Field(description="使用的模型ID，如claude-3-5-sonnet-20241022")
    messages: list[AnthropicMessage] = Field(description="对话消息列表")
    max_tokens: int = Field(gt=0, description="最大输出token数量")
    system: str | list[AnthropicSystemMessage] | None = Field(
        None, description="系统提示信息"
    )
    tools: list[AnthropicToolDefinition] | None = Field(
        None, description="可用工具定义"
    )
    tool_choice: dict[str, Any] | None = Field(None, description="工具选择配置")
    metadata: dict[str, Any] | None = Field(None, description="可选元数据")
    stop_sequences: list[str] | None = Field(None, description="停止序列")
    stream: bool | None = Field(False, description="是否使用流式响应")
    temperature: float | None = Field(None, ge=0.0, le=1.0, description="采样温度")
    top_p: float | None = Field(None, ge=0.0, le=1.0, description="top-p采样参数")
    top_k: int | None = Field(None, ge=1, description="top-k采样参数")
    thinking: dict[str, Any] | None = Field(None, description="推理模式配置对象")


class AnthropicCountTokensRequest(BaseModel):
    """count_tokens请求，与消息请求相同但没有max_tokens"""

    model_config = ConfigDict(extra="allow")

    model: str = Field(description="模型ID")
    messages: list[AnthropicMessage] = Field(description="对话消息列表")
    system: str | list[AnthropicSystemMessage] | None = Field(None, description="系统提示")
    tools: list[AnthropicToolDefinition] | None = Field(None, description="工具定义")


class AnthropicContentBlock(BaseModel):
    """响应内容块"""

    type: Literal["text", "tool_use"]
    text: str | None = Field(None, description="文本内容，当type为text时")
    id: str | None = Field(None, description="工具调用ID，当type为tool_use时")
    name: str | None = Field(None, description="工具名称，当type为tool_use时")
    input: dict[str, Any] | None = Field(
        None, description="工具输入，当type为tool_use时"
    )


class AnthropicUsage(BaseModel):
    """使用统计"""

    input_tokens: int = Field(0, description="输入token数量")
    output_tokens: int = Field(0, description="输出token数量")


class MessageDelta(BaseModel):
    """消息增量"""

    stop_reason: str | None = Field(None, description="停止原因")
    stop_sequence: str | None = Field(None, description="停止序列")


class AnthropicStreamMessageStartMessage(BaseModel):
    """流式消息开始事件中的消息详情"""

    id: str = Field(description="消息ID")
    type: str = Field(default=AnthropicMessageTypes.MESSAGE, description="消息类型")
    role: Literal["assistant"] = Field(
        default=AnthropicRoles.ASSISTANT, description="消息角色"
    )
    model: str = Field(description="使用的模型ID")
    content: list[Any] = Field(default_factory=list, description="内容块，始终为空")
    stop_reason: str | None = Field(None, description="停止原因")
    stop_sequence: str | None = Field(None, description="停止序列")
    usage: AnthropicUsage = Field(description="使用统计")


class AnthropicStreamMessage(BaseModel):
    """message_start / message_delta / message_stop 事件"""

    type: str = Field(
        default=AnthropicStreamEventTypes.MESSAGE_START, description="事件类型"
    )
    message: AnthropicStreamMessageStartMessage | None = Field(None, description="消息详情")
    delta: MessageDelta | None = Field(None, description="消息增量")
    usage: AnthropicUsage | None = Field(None, description="使用统计")


class Delta(BaseModel):
    """内容块增量"""

    type: str = Field(default=AnthropicContentTypes.TEXT_DELTA, description="增量类型")
    text: str | None = Field(None, description="文本增量内容")
    partial_json: str | None = Field(None, description="部分JSON字符串")


class ContentBlock(BaseModel):
    """content_block_start 事件中的内容块"""

    type: str = Field(default=AnthropicContentTypes.TEXT, description="内容块类型")
    text: str | None = Field(None, description="文本内容")
    # tool_use相关字段
    id: str | None = Field(None, description="工具调用ID，当type为tool_use时")
    name: str | None = Field(None, description="工具名称，当type为tool_use时")
    input: dict[str, Any] | None = Field(
        None, description="工具输入，当type为tool_use时"
    )


class AnthropicStreamContentBlockStart(BaseModel):
    """流式内容块开始"""

    type: str = Field(
        default=AnthropicStreamEventTypes.CONTENT_BLOCK_START, description="事件类型"
    )
    index: int = Field(default=0, description="内容块索引")
    content_block: ContentBlock = Field(
        default_factory=lambda: ContentBlock(type=AnthropicContentTypes.TEXT, text="")
    )


class AnthropicStreamContentBlock(BaseModel):
    """流式内容块增量"""

    type: str = Field(
        default=AnthropicStreamEventTypes.CONTENT_BLOCK_DELTA, description="事件类型"
    )
    index: int = Field(0, description="内容块索引")
    delta: Delta = Field(description="增量内容")


class AnthropicStreamContentBlockStop(BaseModel):
    """流式内容块结束"""

    type: str = Field(
        default=AnthropicStreamEventTypes.CONTENT_BLOCK_STOP, description="事件类型"
    )
    index: int = Field(0, description="内容块索引")


class AnthropicPing(BaseModel):
    """流式ping消息"""

    type: str = Field(default=AnthropicStreamEventTypes.PING, description="事件类型")


class AnthropicMessageResponse(BaseModel):
    """原生消息响应"""

    id: str = Field(description="响应唯一ID")
    type: str = Field(default=AnthropicMessageTypes.MESSAGE, description="响应类型")
    role: Literal["assistant"] = Field(
        default=AnthropicRoles.ASSISTANT, description="消息角色"
    )
    content: list[AnthropicContentBlock] = Field(description="消息内容块")
    model: str = Field(description="使用的模型ID")
    stop_reason: str | None = Field(None, description="停止原因")
    stop_sequence: str | None = Field(None, description="停止序列")
    usage: AnthropicUsage = Field(description="使用统计")
