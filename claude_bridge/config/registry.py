"""模型能力注册表

只读查询各模型的上下文窗口、最大输出与工具/图像支持，
仅用于校验与警告，不参与转换逻辑。
"""

from pydantic import BaseModel, ConfigDict, Field


class ModelCapabilities(BaseModel):
    """模型能力"""

    model_config = ConfigDict(frozen=True)

    context_window: int = Field(description="上下文窗口（token）")
    max_output_tokens: int = Field(description="最大输出token数量")
    supports_tools: bool = Field(description="是否支持工具调用")
    supports_image_input: bool = Field(description="是否支持图像输入")


MODEL_CAPABILITIES: dict[str, ModelCapabilities] = {
    # OpenAI
    "gpt-4o": ModelCapabilities(
        context_window=128000, max_output_tokens=16384, supports_tools=True, supports_image_input=True
    ),
    "gpt-4o-mini": ModelCapabilities(
        context_window=128000, max_output_tokens=16384, supports_tools=True, supports_image_input=True
    ),
    "gpt-4.1": ModelCapabilities(
        context_window=1047576, max_output_tokens=32768, supports_tools=True, supports_image_input=True
    ),
    "gpt-4.1-mini": ModelCapabilities(
        context_window=1047576, max_output_tokens=32768, supports_tools=True, supports_image_input=True
    ),
    "o3": ModelCapabilities(
        context_window=200000, max_output_tokens=100000, supports_tools=True, supports_image_input=True
    ),
    "o4-mini": ModelCapabilities(
        context_window=200000, max_output_tokens=100000, supports_tools=True, supports_image_input=True
    ),
    # Google
    "gemini-2.0-flash": ModelCapabilities(
        context_window=1048576, max_output_tokens=8192, supports_tools=True, supports_image_input=True
    ),
    "gemini-2.5-flash": ModelCapabilities(
        context_window=1048576, max_output_tokens=65536, supports_tools=True, supports_image_input=True
    ),
    "gemini-2.5-pro": ModelCapabilities(
        context_window=1048576, max_output_tokens=65536, supports_tools=True, supports_image_input=True
    ),
}


def find_model_capabilities(model: str | None) -> ModelCapabilities | None:
    """查询模型能力，未知模型返回None"""
    if not model:
        return None
    return MODEL_CAPABILITIES.get(model)
