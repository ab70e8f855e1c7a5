"""
API模块

提供本地服务器的路由、处理器和中间件。

主要功能:
- 原生消息端点（经拦截层转发）
- 健康检查端点
- 中间件集成

子模块:
- handlers: 消息端点处理器
- routes: 健康检查路由
- middleware: 中间件实现
"""

# 导入路由和处理器
from .handlers import MessagesHandler, count_tokens_endpoint, messages_endpoint
from .handlers import router as handlers_router

# 导入中间件
from .middleware import RequestTimingMiddleware, setup_middlewares
from .routes import health_check
from .routes import router as routes_router

__all__ = [
    # 路由
    "routes_router",
    "handlers_router",
    "health_check",
    # 处理器
    "MessagesHandler",
    "messages_endpoint",
    "count_tokens_endpoint",
    # 中间件
    "RequestTimingMiddleware",
    "setup_middlewares",
]
