"""与供应商无关的中间表示（Wire Format Model）

纯数据类型，不包含任何I/O。原生请求先解析为 WireRequest，
再由各供应商的转换器生成目标请求；供应商响应转换为 WireResponse
后再编码为原生格式。
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """会话角色"""

    USER = "user"
    ASSISTANT = "assistant"


class StopReason(str, Enum):
    """停止原因"""

    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"
    ERROR = "error"


class TextBlock(BaseModel):
    """文本内容块"""

    type: Literal["text"] = "text"
    text: str = Field(description="文本内容")


class ImageBlock(BaseModel):
    """图像内容块，base64数据或URL二选一"""

    type: Literal["image"] = "image"
    media_type: str | None = Field(None, description="图像MIME类型")
    data: str | None = Field(None, description="base64编码的图像数据")
    url: str | None = Field(None, description="图像URL")


class ToolUseBlock(BaseModel):
    """工具调用内容块"""

    type: Literal["tool_use"] = "tool_use"
    id: str = Field(description="工具调用ID")
    name: str = Field(description="工具名称")
    input: dict[str, Any] = Field(default_factory=dict, description="工具输入参数")


class ToolResultBlock(BaseModel):
    """工具结果内容块"""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = Field(description="对应的工具调用ID")
    content: str | list[Union[TextBlock, ImageBlock]] = Field(
        "", description="工具结果内容"
    )
    is_error: bool = Field(False, description="是否为错误结果")

    def text_content(self) -> str:
        """工具结果中的文本部分"""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            part.text for part in self.content if isinstance(part, TextBlock)
        )


ContentBlock = Annotated[
    Union[TextBlock, ImageBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]

# 一条消息是有序的内容块序列
WireMessage = list[ContentBlock]


class WireTurn(BaseModel):
    """会话中的一轮：角色加消息内容"""

    role: Role = Field(description="消息角色")
    content: WireMessage = Field(default_factory=list, description="内容块序列")


class WireTool(BaseModel):
    """工具定义"""

    name: str = Field(description="工具名称")
    description: str | None = Field(None, description="工具描述")
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema格式的输入参数定义",
    )


class ToolChoice(BaseModel):
    """工具选择配置"""

    type: Literal["auto", "any", "tool", "none"] = Field(description="选择模式")
    name: str | None = Field(None, description="当type为tool时的工具名称")
    disable_parallel_tool_use: bool | None = Field(None, description="禁止并行工具调用")


class WireRequest(BaseModel):
    """与供应商无关的请求"""

    model: str = Field(description="客户端请求的模型ID")
    system: list[str] | None = Field(None, description="系统提示文本块")
    messages: list[WireTurn] = Field(description="有序的会话轮次")
    tools: list[WireTool] | None = Field(None, description="可用工具定义")
    tool_choice: ToolChoice | None = Field(None, description="工具选择配置")
    max_tokens: int = Field(description="最大输出token数量")
    stream: bool = Field(False, description="是否使用流式响应")
    temperature: float | None = Field(None, description="采样温度")
    top_p: float | None = Field(None, description="top-p采样参数")
    top_k: int | None = Field(None, description="top-k采样参数")
    stop_sequences: list[str] | None = Field(None, description="停止序列")
    metadata: dict[str, Any] | None = Field(None, description="可选元数据")
    thinking: dict[str, Any] | None = Field(None, description="推理模式配置")

    def has_images(self) -> bool:
        for turn in self.messages:
            for block in turn.content:
                if isinstance(block, ImageBlock):
                    return True
                if isinstance(block, ToolResultBlock) and not isinstance(
                    block.content, str
                ):
                    if any(isinstance(part, ImageBlock) for part in block.content):
                        return True
        return False


class Usage(BaseModel):
    """token使用统计，始终来自后端自身的计数"""

    input_tokens: int = Field(0, description="输入token数量")
    output_tokens: int = Field(0, description="输出token数量")


class WireResponse(BaseModel):
    """与供应商无关的完整响应"""

    id: str = Field(description="响应ID")
    model: str = Field(description="模型ID")
    stop_reason: StopReason = Field(description="停止原因")
    stop_sequence: str | None = Field(None, description="命中的停止序列")
    content: WireMessage = Field(default_factory=list, description="内容块序列")
    usage: Usage = Field(default_factory=Usage, description="使用统计")


# 流式增量：供应商流解析器产出，原生流编码器消费


class MessageInfoDelta(BaseModel):
    """响应元信息（ID、模型），在第一个后端分块到达时产出"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["message"] = "message"
    id: str
    model: str


class TextDelta(BaseModel):
    """文本增量"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str


class ToolCallDelta(BaseModel):
    """工具调用增量；同一index的多个分片拼接成完整参数"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["tool_call"] = "tool_call"
    index: int
    id: str | None = None
    name: str | None = None
    arguments: str = ""


class UsageDelta(BaseModel):
    """使用统计，可能在完成信号之后才到达"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["usage"] = "usage"
    usage: Usage


class FinishDelta(BaseModel):
    """后端发出的完成信号"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["finish"] = "finish"
    stop_reason: StopReason
    stop_sequence: str | None = None


class ErrorDelta(BaseModel):
    """后端失败或流中断；before_content为True表示尚未产出任何内容"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["error"] = "error"
    message: str
    before_content: bool = False


StreamDelta = Union[
    MessageInfoDelta, TextDelta, ToolCallDelta, UsageDelta, FinishDelta, ErrorDelta
]


def resolve_stop_reason(stop_reason: StopReason, has_tool_use: bool) -> StopReason:
    """包含工具调用的正常结束统一解析为tool_use（流式与非流式一致）"""
    if stop_reason == StopReason.END_TURN and has_tool_use:
        return StopReason.TOOL_USE
    return stop_reason
