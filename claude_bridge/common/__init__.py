"""
通用工具模块

提供项目中共享的工具和实用功能。

主要功能:
- 日志配置和管理
- 事务ID生成和追踪
- 追加式事务日志（JSON Lines）
- Token估算（count_tokens）

使用示例:
    from claude_bridge.common import configure_logging, get_logger_with_request_id

    configure_logging(config)
    bound_logger = get_logger_with_request_id("req_123")
"""

# 导入日志相关功能
from .logging import (
    configure_logging,
    generate_request_id,
    get_logger_with_request_id,
)

# 导入Token计数功能
from .token_counter import TokenCounter, token_counter

# 导入事务日志
from .trace_logger import Direction, TraceLogger, decode_body

__all__ = [
    # 日志功能
    "configure_logging",
    "generate_request_id",
    "get_logger_with_request_id",
    # 事务日志
    "Direction",
    "TraceLogger",
    "decode_body",
    # Token计数
    "TokenCounter",
    "token_counter",
]
