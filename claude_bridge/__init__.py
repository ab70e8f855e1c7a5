"""
Claude Bridge

拦截原生消息API（Anthropic Messages）的请求，转换后发送给其他供应商
（OpenAI、Google Gemini），再把响应转换回原生格式。

主要功能:
- 原生协议与各供应商格式之间的双向转换
- 支持流式和非流式响应
- 完整的工具调用支持
- 失败重试与取消传播
- 追加式事务日志（桥接模式 / 追踪模式）

使用示例:
    from claude_bridge import load_config, create_http_client

    config = load_config()
    client = create_http_client(config)
"""

__version__ = "0.1.0"
__description__ = "Native messages API bridge to other LLM providers"

# 导出主要的公共API
from .common import configure_logging
from .config import BridgeConfig, load_config
from .interceptor import create_http_client, create_transport

__all__ = [
    "BridgeConfig",
    "load_config",
    "configure_logging",
    "create_http_client",
    "create_transport",
    "__version__",
    "__description__",
]
