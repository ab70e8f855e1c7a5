"""Google Gemini generateContent API 数据模型定义"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class GeminiFunctionCall(BaseModel):
    """模型发起的函数调用"""

    model_config = ConfigDict(extra="allow")

    id: str | None = Field(None, description="函数调用ID（部分模型返回）")
    name: str = Field(description="函数名称")
    args: dict[str, Any] = Field(default_factory=dict, description="函数参数")


class GeminiFunctionResponse(BaseModel):
    """函数调用结果"""

    id: str | None = Field(None, description="对应的函数调用ID")
    name: str = Field(description="函数名称")
    response: dict[str, Any] = Field(description="函数结果，必须为对象")


class GeminiInlineData(BaseModel):
    """内联二进制数据"""

    mimeType: str = Field(description="MIME类型")
    data: str = Field(description="base64编码的数据")


class GeminiPart(BaseModel):
    """内容片段，以下字段恰好出现一个"""

    model_config = ConfigDict(extra="allow")

    text: str | None = Field(None, description="文本")
    inlineData: GeminiInlineData | None = Field(None, description="内联数据")
    functionCall: GeminiFunctionCall | None = Field(None, description="函数调用")
    functionResponse: GeminiFunctionResponse | None = Field(None, description="函数结果")
    thought: bool | None = Field(None, description="是否为思考内容")


class GeminiContent(BaseModel):
    """一轮会话内容"""

    model_config = ConfigDict(extra="allow")

    role: Literal["user", "model"] | None = Field(None, description="角色")
    parts: list[GeminiPart] = Field(default_factory=list, description="内容片段")


class GeminiFunctionDeclaration(BaseModel):
    """函数声明"""

    name: str = Field(description="函数名称")
    description: str | None = Field(None, description="函数描述")
    parameters: dict[str, Any] | None = Field(None, description="OpenAPI子集格式的参数定义")


class GeminiTool(BaseModel):
    """工具集合"""

    functionDeclarations: list[GeminiFunctionDeclaration] = Field(description="函数声明列表")


class GeminiFunctionCallingConfig(BaseModel):
    """函数调用模式配置"""

    mode: Literal["AUTO", "ANY", "NONE"] = Field(description="调用模式")
    allowedFunctionNames: list[str] | None = Field(None, description="允许调用的函数")


class GeminiToolConfig(BaseModel):
    """工具配置"""

    functionCallingConfig: GeminiFunctionCallingConfig


class GeminiGenerationConfig(BaseModel):
    """生成参数"""

    maxOutputTokens: int | None = Field(None, description="最大输出token数量")
    temperature: float | None = Field(None, description="采样温度")
    topP: float | None = Field(None, description="top-p采样参数")
    topK: int | None = Field(None, description="top-k采样参数")
    stopSequences: list[str] | None = Field(None, description="停止序列")


class GeminiRequest(BaseModel):
    """generateContent 请求模型（模型名在URL中）"""

    contents: list[GeminiContent] = Field(description="会话内容")
    systemInstruction: GeminiContent | None = Field(None, description="系统指令")
    tools: list[GeminiTool] | None = Field(None, description="工具定义")
    toolConfig: GeminiToolConfig | None = Field(None, description="工具配置")
    generationConfig: GeminiGenerationConfig = Field(
        default_factory=GeminiGenerationConfig, description="生成参数"
    )


class GeminiUsageMetadata(BaseModel):
    """使用统计"""

    model_config = ConfigDict(extra="allow")

    promptTokenCount: int = Field(0, description="提示token数量")
    candidatesTokenCount: int = Field(0, description="候选输出token数量")
    totalTokenCount: int = Field(0, description="总token数量")


class GeminiCandidate(BaseModel):
    """候选响应"""

    model_config = ConfigDict(extra="allow")

    content: GeminiContent | None = Field(None, description="候选内容")
    finishReason: str | None = Field(None, description="完成原因")
    index: int | None = Field(None, description="候选索引")


class GeminiResponse(BaseModel):
    """generateContent 响应，流式时每个SSE分块也是此结构"""

    model_config = ConfigDict(extra="allow")

    candidates: list[GeminiCandidate] = Field(default_factory=list, description="候选列表")
    usageMetadata: GeminiUsageMetadata | None = Field(None, description="使用统计")
    modelVersion: str | None = Field(None, description="实际使用的模型版本")
    responseId: str | None = Field(None, description="响应ID")
