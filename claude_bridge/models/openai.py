"""OpenAI Chat Completions API 数据模型定义"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class OpenAIMessageContent(BaseModel):
    """OpenAI消息内容项"""

    type: Literal["text", "image_url"] = Field(description="内容类型")
    text: str | None = Field(None, description="文本内容")
    image_url: dict[str, str] | None = Field(None, description="图像URL配置")


class OpenAIToolCallFunction(BaseModel):
    """工具调用函数"""

    name: str | None = Field(None, description="函数名称")  # 流式响应中可能缺失
    arguments: str | None = Field(None, description="JSON格式的函数参数")  # 支持增量传输


class OpenAIToolCall(BaseModel):
    """工具调用"""

    id: str = Field(description="工具调用ID")
    type: Literal["function"] = Field("function", description="调用类型")
    function: OpenAIToolCallFunction = Field(description="函数详情")


class OpenAIMessage(BaseModel):
    """OpenAI消息格式"""

    role: Literal["system", "user", "assistant", "tool"] = Field(description="消息角色")
    content: str | list[OpenAIMessageContent] | None = Field(
        None, description="消息内容"
    )
    tool_calls: list[OpenAIToolCall] | None = Field(
        None, description="工具调用信息（当role为assistant时）"
    )
    tool_call_id: str | None = Field(
        None, description="工具调用ID（当role为tool时）"
    )


class OpenAIToolFunction(BaseModel):
    """OpenAI工具函数定义"""

    name: str = Field(description="函数名称")
    description: str | None = Field(None, description="函数描述")
    parameters: dict[str, Any] | None = Field(
        None, description="JSON Schema格式的函数参数"
    )


class OpenAITool(BaseModel):
    """OpenAI工具定义"""

    type: Literal["function"] = Field("function", description="工具类型")
    function: OpenAIToolFunction = Field(description="函数定义")


class OpenAIRequest(BaseModel):
    """OpenAI API请求模型"""

    model: str = Field(description="使用的模型ID，如gpt-4o")
    messages: list[OpenAIMessage] = Field(description="对话消息列表")
    max_tokens: int | None = Field(None, description="最大输出token数量")
    temperature: float | None = Field(None, ge=0.0, le=2.0, description="采样温度")
    top_p: float | None = Field(None, ge=0.0, le=1.0, description="top-p采样参数")
    stream: bool | None = Field(False, description="是否使用流式响应")
    stream_options: dict[str, Any] | None = Field(None, description="流式响应选项")
    stop: list[str] | None = Field(None, description="停止序列")
    tools: list[OpenAITool] | None = Field(None, description="可用工具定义")
    tool_choice: str | dict[str, Any] | None = Field(
        None, description="工具选择配置"
    )
    parallel_tool_calls: bool | None = Field(
        None, description="是否允许并行工具调用"
    )
    user: str | None = Field(None, description="用户信息")


class OpenAIUsage(BaseModel):
    """OpenAI使用统计"""

    model_config = ConfigDict(extra="allow")

    prompt_tokens: int = Field(0, description="提示token数量")
    completion_tokens: int = Field(0, description="完成token数量")
    total_tokens: int = Field(0, description="总token数量")


class OpenAIResponseMessage(BaseModel):
    """响应中的助手消息"""

    model_config = ConfigDict(extra="allow")

    role: str | None = Field(None, description="消息角色")
    content: str | None = Field(None, description="消息内容")
    tool_calls: list[OpenAIToolCall] | None = Field(None, description="工具调用")
    refusal: str | None = Field(None, description="拒绝服务的详细信息")


class OpenAIDeltaToolCall(BaseModel):
    """工具调用增量"""

    index: int | None = Field(None, description="工具调用索引")
    id: str | None = Field(None, description="工具调用ID")
    type: Literal["function"] | None = Field(None, description="调用类型")
    function: OpenAIToolCallFunction | None = Field(None, description="函数详情增量")


class OpenAIChoiceDelta(BaseModel):
    """流式响应增量内容"""

    model_config = ConfigDict(extra="allow")

    role: str | None = Field(None, description="消息角色")
    content: str | None = Field(None, description="内容增量")
    tool_calls: list[OpenAIDeltaToolCall] | None = Field(
        None, description="工具调用增量"
    )
    refusal: str | None = Field(None, description="拒绝内容增量")


class OpenAIChoice(BaseModel):
    """OpenAI响应选项"""

    model_config = ConfigDict(extra="allow")

    index: int = Field(0, description="选项索引")
    message: OpenAIResponseMessage | None = Field(None, description="完整消息响应")
    delta: OpenAIChoiceDelta | None = Field(None, description="流式增量内容")
    finish_reason: str | None = Field(
        None,
        description="完成原因: stop, length, content_filter, tool_calls, function_call",
    )


class OpenAIResponse(BaseModel):
    """OpenAI API响应模型"""

    model_config = ConfigDict(extra="allow")

    id: str = Field("", description="响应唯一ID")
    object: str | None = Field(None, description="对象类型")
    created: int | None = Field(None, description="创建时间戳")
    model: str | None = Field(None, description="使用的模型ID")
    choices: list[OpenAIChoice] = Field(default_factory=list, description="响应选项列表")
    usage: OpenAIUsage | None = Field(None, description="使用统计")


class OpenAIStreamResponse(BaseModel):
    """OpenAI流式响应分块"""

    model_config = ConfigDict(extra="allow")

    id: str = Field("", description="响应唯一ID")
    object: str | None = Field(None, description="对象类型")
    created: int | None = Field(None, description="创建时间戳")
    model: str | None = Field(None, description="使用的模型ID")
    choices: list[OpenAIChoice] = Field(default_factory=list, description="响应选项列表")
    usage: OpenAIUsage | None = Field(
        None, description="使用统计（仅在流式响应最后一块出现）"
    )
