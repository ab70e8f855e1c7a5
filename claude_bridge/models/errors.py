"""桥接错误类型与标准化错误响应模型"""

from typing import Any

from pydantic import BaseModel, Field


class BridgeError(Exception):
    """桥接层所有错误的基类"""


class ConfigurationError(BridgeError):
    """配置错误（缺少凭据、无效的provider/model），在任何网络请求之前致命"""


class MalformedRequestError(BridgeError):
    """客户端原生请求体无法解析，仅对当前请求致命"""


class TranslationError(BridgeError):
    """某个字段在目标协议中没有对应表示，可恢复：丢弃字段并记录警告"""

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


class BackendError(BridgeError):
    """后端返回的不可重试错误（4xx，429除外）"""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransientBackendError(BackendError):
    """可重试的后端错误：网络故障、5xx、限流"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, status_code, body)
        self.retry_after = retry_after


class StreamInterruptedError(BridgeError):
    """后端连接在流式传输中途断开，不重试"""


class NativeErrorDetail(BaseModel):
    """原生协议错误详情"""

    type: str = Field(description="错误类型")
    message: str = Field(description="错误消息")


class NativeErrorResponse(BaseModel):
    """原生协议错误响应"""

    type: str = Field("error", description="响应类型")
    error: NativeErrorDetail = Field(description="错误详情")


# HTTP状态码到原生错误类型的映射表
ERROR_TYPE_MAPPING = {
    400: "invalid_request_error",
    401: "authentication_error",
    403: "permission_error",
    404: "not_found_error",
    413: "request_too_large",
    429: "rate_limit_error",
    500: "api_error",
    529: "overloaded_error",
}

DEFAULT_ERROR_MESSAGES = {
    400: "Request body is not a valid messages request",
    401: "Invalid API key",
    403: "Permission denied",
    404: "The requested resource could not be found",
    413: "Request exceeds the maximum allowed size",
    429: "Rate limit exceeded",
    500: "Internal bridge error",
    529: "Backend is overloaded",
}


def format_compact_traceback(error: Exception, max_lines: int = 10) -> str:
    """格式化紧凑的错误堆栈信息，只保留最后几行"""
    import traceback

    error_traceback = "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    )
    lines = [line for line in error_traceback.split("\n") if line.strip()]
    return "\n".join(lines[-max_lines:]) if lines else str(error)


def get_error_response(
    status_code: int,
    message: str | None = None,
) -> NativeErrorResponse:
    """根据HTTP状态码获取原生格式的错误响应模型"""
    error_type = ERROR_TYPE_MAPPING.get(status_code)
    if error_type is None:
        error_type = "api_error" if status_code >= 500 else "invalid_request_error"
    default_message = DEFAULT_ERROR_MESSAGES.get(status_code, "Unexpected error")
    return NativeErrorResponse(
        error=NativeErrorDetail(type=error_type, message=message or default_message)
    )


def error_response_dict(status_code: int, message: str | None = None) -> dict[str, Any]:
    """返回可直接序列化的错误响应字典"""
    return get_error_response(status_code, message).model_dump()
