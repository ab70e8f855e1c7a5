"""健康检查路由"""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """健康检查，返回当前模式与目标供应商"""
    config = request.app.state.config
    if config.trace:
        return {"status": "healthy", "mode": "trace"}
    return {
        "status": "healthy",
        "mode": "bridge",
        "provider": config.provider.value,
        "model": config.model,
    }
