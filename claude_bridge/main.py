from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from claude_bridge.api.handlers import MessagesHandler
from claude_bridge.api.handlers import router as messages_router
from claude_bridge.api.middleware.timing import setup_middlewares
from claude_bridge.api.routes import router as health_router
from claude_bridge.common.logging import get_logger_with_request_id
from claude_bridge.config.registry import find_model_capabilities
from claude_bridge.config.settings import BridgeConfig, get_config
from claude_bridge.interceptor.transport import create_http_client
from claude_bridge.models.errors import (
    BridgeError,
    format_compact_traceback,
    get_error_response,
)


def log_startup_banner(config: BridgeConfig) -> None:
    """启动时输出当前模式、供应商、模型能力与日志位置"""
    if config.trace:
        logger.info(f"启动 Claude Bridge - Mode: trace, Native: {config.native_base_url}")
    else:
        logger.info(
            f"启动 Claude Bridge - Mode: bridge, Provider: {config.provider.value}, "
            f"Model: {config.model}, BaseURL: {config.resolved_base_url}"
        )
        capabilities = find_model_capabilities(config.model)
        if capabilities is None:
            logger.warning(f"模型能力未知 - model: {config.model}")
        else:
            logger.info(
                f"模型能力 - context: {capabilities.context_window}, "
                f"max_output: {capabilities.max_output_tokens}, "
                f"tools: {capabilities.supports_tools}, images: {capabilities.supports_image_input}"
            )
        if config.max_output_tokens is not None:
            logger.info(f"输出token上限: {config.max_output_tokens}")

    if config.logging_enabled:
        logger.info(f"事务日志目录: {config.log_path.resolve()}")


def create_app(
    config: BridgeConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    创建本地端点服务器

    Args:
        config: 桥接配置，为None时从环境变量加载
        transport: 拦截策略，为None时按配置创建
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        client = create_http_client(config, transport=transport)
        app.state.messages_handler = MessagesHandler(client, config.native_base_url)
        log_startup_banner(config)

        yield

        # 关闭时的清理工作
        await client.aclose()
        logger.info("服务器已停止")

    app = FastAPI(
        title="Claude Bridge",
        version="0.1.0",
        description="Serves the native messages API from other providers.",
        lifespan=lifespan,
    )
    app.state.config = config

    setup_middlewares(app)

    app.include_router(health_router)
    app.include_router(messages_router)

    # 全局异常处理程序
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """全局异常处理，以原生错误格式返回而不是直接断开"""
        request_id = getattr(request.state, "request_id", None)
        bound_logger = get_logger_with_request_id(request_id)
        bound_logger.error(
            f"捕获未处理的服务器异常 - {type(exc).__name__}: {exc}\n"
            f"{format_compact_traceback(exc)}"
        )

        message = str(exc) if isinstance(exc, BridgeError) else "Internal bridge error"
        error_response = get_error_response(500, message=message)
        return JSONResponse(status_code=500, content=error_response.model_dump())

    return app
