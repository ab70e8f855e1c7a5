"""
消息端点处理器

本地服务器收到的原生请求通过已安装拦截层的 httpx 客户端重新发出，
就像客户端直接调用原生端点一样，所以桥接与追踪两种模式行为一致。
"""

from collections.abc import AsyncIterator

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from claude_bridge.common.logging import get_logger_with_request_id
from claude_bridge.models.errors import error_response_dict

router = APIRouter()

# 不转发的逐跳请求/响应头
HOP_BY_HOP_HEADERS = {
    "host",
    "content-length",
    "transfer-encoding",
    "connection",
    "keep-alive",
}


def _forward_headers(headers) -> dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}


class MessagesHandler:
    """把本地请求转交给拦截层"""

    def __init__(self, client: httpx.AsyncClient, native_base_url: str):
        self.client = client
        self.native_base_url = native_base_url.rstrip("/")

    async def forward(self, request: Request, path: str):
        """
        转发请求并把响应逐块回传

        客户端断开时 StreamingResponse 取消迭代，上游响应随之关闭。
        """
        request_id = getattr(request.state, "request_id", None)
        bound_logger = get_logger_with_request_id(request_id)

        body = await request.body()
        upstream_request = self.client.build_request(
            "POST",
            f"{self.native_base_url}{path}",
            headers=_forward_headers(request.headers),
            content=body,
        )

        try:
            response = await self.client.send(upstream_request, stream=True)
        except httpx.TransportError as e:
            bound_logger.error(f"转发请求失败 - Error: {type(e).__name__}: {e}")
            return JSONResponse(status_code=502, content=error_response_dict(502, str(e)))

        return StreamingResponse(
            self._relay(response),
            status_code=response.status_code,
            headers=_forward_headers(response.headers),
        )

    @staticmethod
    async def _relay(response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_raw():
                yield chunk
        finally:
            await response.aclose()


def get_messages_handler(request: Request) -> MessagesHandler:
    return request.app.state.messages_handler


@router.post("/v1/messages")
async def messages_endpoint(request: Request):
    """原生消息端点"""
    return await get_messages_handler(request).forward(request, "/v1/messages")


@router.post("/v1/messages/count_tokens")
async def count_tokens_endpoint(request: Request):
    """原生token计数端点"""
    return await get_messages_handler(request).forward(request, "/v1/messages/count_tokens")
