"""测试数据：原生请求、各供应商的响应与流式分块、模拟后端"""

import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx

from claude_bridge.common.token_counter import TokenCounter
from claude_bridge.config.settings import BridgeConfig, Provider
from claude_bridge.core.bridge import MessagesBridge
from claude_bridge.core.clients.backend import BackendInvoker, RetryPolicy
from claude_bridge.interceptor.transport import BridgeTransport
from claude_bridge.main import create_app

NATIVE_URL = "https://api.anthropic.com/v1/messages"
COUNT_TOKENS_URL = "https://api.anthropic.com/v1/messages/count_tokens"

WEATHER_TOOL = {
    "name": "get_weather",
    "description": "Get the current weather for a location",
    "input_schema": {
        "type": "object",
        "properties": {
            "location": {"type": "string", "description": "City name"},
            "unit": {"type": "string", "enum": ["celsius", "fahrenheit"]},
        },
        "required": ["location"],
    },
}


def make_config(provider: Provider = Provider.OPENAI, **overrides) -> BridgeConfig:
    """测试用桥接配置，默认OpenAI、3次尝试"""
    values: dict[str, Any] = {
        "provider": provider,
        "model": "gpt-4o" if provider == Provider.OPENAI else "gemini-2.5-flash",
        "api_key": "test-key",
        "max_retries": 3,
    }
    values.update(overrides)
    return BridgeConfig(**values)


def native_request(stream: bool = False, **overrides) -> dict[str, Any]:
    request: dict[str, Any] = {
        "model": "claude-sonnet-4-20250514",
        "max_tokens": 1024,
        "messages": [{"role": "user", "content": "Hello"}],
        "stream": stream,
    }
    request.update(overrides)
    return request


def native_tool_request(stream: bool = False, **overrides) -> dict[str, Any]:
    return native_request(
        stream=stream,
        messages=[{"role": "user", "content": "What's the weather in Paris?"}],
        tools=[WEATHER_TOOL],
        **overrides,
    )


def native_tool_result_request(is_error: bool = False) -> dict[str, Any]:
    """包含一轮完整工具调用的会话"""
    return native_request(
        system="You are a weather assistant.",
        tools=[WEATHER_TOOL],
        messages=[
            {"role": "user", "content": "What's the weather in Paris?"},
            {
                "role": "assistant",
                "content": [
                    {"type": "text", "text": "Let me check."},
                    {
                        "type": "tool_use",
                        "id": "toolu_01",
                        "name": "get_weather",
                        "input": {"location": "Paris"},
                    },
                ],
            },
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": "toolu_01",
                        "content": "18 degrees, cloudy",
                        "is_error": is_error,
                    },
                    {"type": "text", "text": "Thanks, and tomorrow?"},
                ],
            },
        ],
    )


# ---- OpenAI ----

OPENAI_TEXT_RESPONSE = {
    "id": "chatcmpl-text",
    "object": "chat.completion",
    "created": 1700000000,
    "model": "gpt-4o",
    "choices": [
        {
            "index": 0,
            "message": {"role": "assistant", "content": "Hello! How can I help you today?"},
            "finish_reason": "stop",
        }
    ],
    "usage": {"prompt_tokens": 12, "completion_tokens": 9, "total_tokens": 21},
}

OPENAI_TOOL_RESPONSE = {
    "id": "chatcmpl-tool",
    "object": "chat.completion",
    "created": 1700000000,
    "model": "gpt-4o",
    "choices": [
        {
            "index": 0,
            "message": {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": "call_abc123",
                        "type": "function",
                        "function": {
                            "name": "get_weather",
                            "arguments": '{"location": "Paris", "unit": "celsius"}',
                        },
                    }
                ],
            },
            "finish_reason": "tool_calls",
        }
    ],
    "usage": {"prompt_tokens": 40, "completion_tokens": 18, "total_tokens": 58},
}


def _openai_chunk(response_id: str, delta: dict | None, finish_reason: str | None = None, usage=None):
    chunk: dict[str, Any] = {
        "id": response_id,
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "gpt-4o",
        "choices": [] if delta is None else [
            {"index": 0, "delta": delta, "finish_reason": finish_reason}
        ],
    }
    if usage is not None:
        chunk["usage"] = usage
    return chunk


OPENAI_TEXT_CHUNKS = [
    _openai_chunk("chatcmpl-text", {"role": "assistant", "content": ""}),
    _openai_chunk("chatcmpl-text", {"content": "Hello! "}),
    _openai_chunk("chatcmpl-text", {"content": "How can I help "}),
    _openai_chunk("chatcmpl-text", {"content": "you today?"}),
    _openai_chunk("chatcmpl-text", {}, finish_reason="stop"),
    _openai_chunk(
        "chatcmpl-text",
        None,
        usage={"prompt_tokens": 12, "completion_tokens": 9, "total_tokens": 21},
    ),
]

# 工具参数分三块到达
OPENAI_TOOL_CHUNKS = [
    _openai_chunk(
        "chatcmpl-tool",
        {
            "role": "assistant",
            "tool_calls": [
                {
                    "index": 0,
                    "id": "call_abc123",
                    "type": "function",
                    "function": {"name": "get_weather", "arguments": '{"location": '},
                }
            ],
        },
    ),
    _openai_chunk(
        "chatcmpl-tool",
        {"tool_calls": [{"index": 0, "function": {"arguments": '"Paris", "unit"'}}]},
    ),
    _openai_chunk(
        "chatcmpl-tool",
        {"tool_calls": [{"index": 0, "function": {"arguments": ': "celsius"}'}}]},
    ),
    _openai_chunk("chatcmpl-tool", {}, finish_reason="tool_calls"),
    _openai_chunk(
        "chatcmpl-tool",
        None,
        usage={"prompt_tokens": 40, "completion_tokens": 18, "total_tokens": 58},
    ),
]


def openai_sse(chunks: list[dict[str, Any]], done: bool = True) -> bytes:
    body = "".join(f"data: {json.dumps(chunk)}\n\n" for chunk in chunks)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode("utf-8")


# ---- Google Gemini ----

GEMINI_TEXT_RESPONSE = {
    "candidates": [
        {
            "content": {"role": "model", "parts": [{"text": "Hello! How can I help you today?"}]},
            "finishReason": "STOP",
            "index": 0,
        }
    ],
    "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 9, "totalTokenCount": 21},
    "modelVersion": "gemini-2.5-flash",
    "responseId": "gemini-text",
}

GEMINI_TOOL_RESPONSE = {
    "candidates": [
        {
            "content": {
                "role": "model",
                "parts": [
                    {
                        "functionCall": {
                            "id": "call_g1",
                            "name": "get_weather",
                            "args": {"location": "Paris", "unit": "celsius"},
                        }
                    }
                ],
            },
            "finishReason": "STOP",
            "index": 0,
        }
    ],
    "usageMetadata": {"promptTokenCount": 40, "candidatesTokenCount": 18, "totalTokenCount": 58},
    "modelVersion": "gemini-2.5-flash",
    "responseId": "gemini-tool",
}

GEMINI_TEXT_CHUNKS = [
    {
        "candidates": [{"content": {"role": "model", "parts": [{"text": "Hello! "}]}, "index": 0}],
        "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 2},
        "modelVersion": "gemini-2.5-flash",
        "responseId": "gemini-text",
    },
    {
        "candidates": [
            {"content": {"role": "model", "parts": [{"text": "How can I help "}]}, "index": 0}
        ],
        "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 6},
        "modelVersion": "gemini-2.5-flash",
        "responseId": "gemini-text",
    },
    {
        "candidates": [
            {
                "content": {"role": "model", "parts": [{"text": "you today?"}]},
                "finishReason": "STOP",
                "index": 0,
            }
        ],
        "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 9, "totalTokenCount": 21},
        "modelVersion": "gemini-2.5-flash",
        "responseId": "gemini-text",
    },
]

GEMINI_TOOL_CHUNKS = [
    {
        "candidates": [
            {
                "content": {
                    "role": "model",
                    "parts": [
                        {
                            "functionCall": {
                                "id": "call_g1",
                                "name": "get_weather",
                                "args": {"location": "Paris", "unit": "celsius"},
                            }
                        }
                    ],
                },
                "finishReason": "STOP",
                "index": 0,
            }
        ],
        "usageMetadata": {"promptTokenCount": 40, "candidatesTokenCount": 18, "totalTokenCount": 58},
        "modelVersion": "gemini-2.5-flash",
        "responseId": "gemini-tool",
    },
]


# 一个候选中包含多个相邻文本part
GEMINI_MULTIPART_RESPONSE = {
    "candidates": [
        {
            "content": {"role": "model", "parts": [{"text": "Hello "}, {"text": "world"}]},
            "finishReason": "STOP",
            "index": 0,
        }
    ],
    "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 2, "totalTokenCount": 6},
    "modelVersion": "gemini-2.5-flash",
    "responseId": "gemini-multipart",
}

GEMINI_MULTIPART_CHUNKS = [
    {
        "candidates": [
            {"content": {"role": "model", "parts": [{"text": "Hello "}]}, "index": 0}
        ],
        "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 1},
        "modelVersion": "gemini-2.5-flash",
        "responseId": "gemini-multipart",
    },
    {
        "candidates": [
            {
                "content": {"role": "model", "parts": [{"text": "world"}]},
                "finishReason": "STOP",
                "index": 0,
            }
        ],
        "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 2, "totalTokenCount": 6},
        "modelVersion": "gemini-2.5-flash",
        "responseId": "gemini-multipart",
    },
]


def gemini_sse(chunks: list[dict[str, Any]]) -> bytes:
    return "".join(f"data: {json.dumps(chunk)}\r\n\r\n" for chunk in chunks).encode("utf-8")


# ---- 模拟后端 ----


class TrackingStream(httpx.AsyncByteStream):
    """逐块产出响应体并记录消费进度与关闭状态"""

    def __init__(self, chunks: list[bytes]):
        self.chunks = chunks
        self.yielded = 0
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            self.yielded += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class ScriptedBackend:
    """按顺序返回预设响应的模拟后端，记录收到的每个请求

    script 中的元素可以是 httpx.Response、异常实例，或接收请求返回响应的函数。
    脚本用完后重复最后一个元素。
    """

    def __init__(self, *script):
        self.script = list(script)
        self.requests: list[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.script[min(len(self.requests), len(self.script)) - 1]
        if isinstance(step, Exception):
            raise step
        if isinstance(step, Callable):
            return step(request)
        return step

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def json_response(
    status_code: int, body: Any, headers: dict[str, str] | None = None
) -> Callable[[httpx.Request], httpx.Response]:
    """每次调用都返回新的响应对象，脚本中可以重复使用"""

    def respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=body, headers=headers)

    return respond


def sse_response(body: bytes) -> Callable[[httpx.Request], httpx.Response]:
    def respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

    return respond


def error_body(message: str) -> dict[str, Any]:
    return {"error": {"message": message, "type": "server_error"}}


class FakeEncoder:
    """按空白分词的编码器，避免测试中加载tiktoken编码表"""

    def encode(self, text: str) -> list[str]:
        return text.split()


def make_test_app(backend: ScriptedBackend, provider: Provider = Provider.OPENAI, **overrides):
    """本地服务器应用，拦截层的桥接管线连到模拟后端"""
    config = make_config(provider, **overrides)
    invoker = BackendInvoker(
        config,
        transport=backend.transport(),
        retry_policy=RetryPolicy(config.max_retries, base_delay=0),
    )
    bridge = MessagesBridge(config, invoker=invoker, counter=TokenCounter(encoder=FakeEncoder()))
    return create_app(config, transport=BridgeTransport(config, bridge=bridge))
