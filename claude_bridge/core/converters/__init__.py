"""
转换器模块

提供原生协议、中间表示与各供应商格式之间的数据转换功能。
"""

from .base import ProviderAdapter, TranslatedRequest, TranslationContext
from .google_converter import GoogleAdapter
from .openai_converter import OpenAIAdapter
from .providers import PROVIDER_ADAPTERS, get_adapter
from .request_converter import NativeRequestParser, translate_request
from .response_converter import (
    WireToNativeConverter,
    build_error_response,
    describe_backend_error,
)
from .stream_converters import (
    NativeStreamEncoder,
    accumulate_native_events,
    format_event,
)

__all__ = [
    "ProviderAdapter",
    "TranslatedRequest",
    "TranslationContext",
    "OpenAIAdapter",
    "GoogleAdapter",
    "PROVIDER_ADAPTERS",
    "get_adapter",
    "NativeRequestParser",
    "translate_request",
    "WireToNativeConverter",
    "build_error_response",
    "describe_backend_error",
    "NativeStreamEncoder",
    "accumulate_native_events",
    "format_event",
]
