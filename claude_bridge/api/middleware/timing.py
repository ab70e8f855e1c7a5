"""请求计时中间件"""

import time
from collections.abc import Callable

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from claude_bridge.common.logging import generate_request_id, get_logger_with_request_id

REQUEST_ID_HEADER = "X-Request-ID"


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """记录请求处理时间的中间件"""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        request_id = generate_request_id()
        request.state.request_id = request_id

        # 获取绑定了请求ID的logger
        bound_logger = get_logger_with_request_id(request_id)

        try:
            response = await call_next(request)
        except Exception as exc:
            response_time = time.time() - start_time
            bound_logger.error(
                f"请求处理错误 - Error: {type(exc).__name__}: {exc}, "
                f"Method: {request.method}, URL: {request.url}, Time: {response_time:.3f}s"
            )
            raise

        response_time = time.time() - start_time
        response_time_ms = round(response_time * 1000, 2)

        # 流式响应在这里只统计到响应头
        bound_logger.info(
            f"请求完成 - {request.method} {request.url.path}, "
            f"Status: {response.status_code}, Time: {response_time_ms}ms"
        )

        response.headers["X-Process-Time"] = f"{response_time:.3f}s"
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def setup_middlewares(app: FastAPI) -> None:
    """设置所有中间件"""
    app.add_middleware(RequestTimingMiddleware)
