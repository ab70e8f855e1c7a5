"""
后端客户端模块

提供供应商后端调用器（重试、流式、取消）。
"""

from .backend import (
    BackendInvoker,
    Invocation,
    InvocationState,
    RetryPolicy,
    classify_response,
    parse_retry_after,
)

__all__ = [
    "BackendInvoker",
    "Invocation",
    "InvocationState",
    "RetryPolicy",
    "classify_response",
    "parse_retry_after",
]
