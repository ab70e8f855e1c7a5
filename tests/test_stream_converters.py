"""测试流式增量解析与原生SSE事件编码"""

import pytest

from claude_bridge.core.converters.google_converter import GoogleAdapter
from claude_bridge.core.converters.openai_converter import OpenAIAdapter
from claude_bridge.core.converters.response_converter import WireToNativeConverter
from claude_bridge.core.converters.stream_converters import (
    NativeStreamEncoder,
    StreamPhase,
    accumulate_native_events,
    format_event,
    parse_sse_events,
)
from claude_bridge.models.errors import StreamInterruptedError
from claude_bridge.models.wire import (
    ErrorDelta,
    FinishDelta,
    MessageInfoDelta,
    StopReason,
    TextDelta,
    ToolCallDelta,
    Usage,
    UsageDelta,
)
from tests.fixtures import (
    GEMINI_MULTIPART_CHUNKS,
    GEMINI_MULTIPART_RESPONSE,
    GEMINI_TEXT_CHUNKS,
    GEMINI_TEXT_RESPONSE,
    GEMINI_TOOL_CHUNKS,
    GEMINI_TOOL_RESPONSE,
    OPENAI_TEXT_CHUNKS,
    OPENAI_TEXT_RESPONSE,
    OPENAI_TOOL_CHUNKS,
    OPENAI_TOOL_RESPONSE,
    gemini_sse,
    openai_sse,
)


async def iter_lines(body: bytes):
    for line in body.decode("utf-8").splitlines():
        yield line


async def iter_items(items):
    for item in items:
        yield item


async def collect(iterator) -> list:
    return [item async for item in iterator]


async def encode(deltas, model: str = "gpt-4o") -> tuple[NativeStreamEncoder, list[str]]:
    encoder = NativeStreamEncoder(model, "req_test")
    events = await collect(encoder.encode(iter_items(deltas)))
    return encoder, events


def event_types(events: list[str]) -> list[str]:
    return [event_type for event_type, _ in parse_sse_events("".join(events))]


def assert_block_order(events: list[str]) -> None:
    """同一时刻最多一个打开的块，块n关闭后块n+1才开始"""
    parsed = parse_sse_events("".join(events))
    assert parsed[0][0] == "message_start"
    assert parsed[-1][0] == "message_stop"

    open_index = None
    next_index = 0
    for event_type, data in parsed:
        if event_type == "content_block_start":
            assert open_index is None
            assert data["index"] == next_index
            open_index = next_index
            next_index += 1
        elif event_type == "content_block_delta":
            assert data["index"] == open_index
        elif event_type == "content_block_stop":
            assert data["index"] == open_index
            open_index = None
        elif event_type in ("message_delta", "message_stop"):
            assert open_index is None


class TestStreamEquivalence:
    """测试流式与非流式结果一致"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "adapter,response,body,model",
        [
            (OpenAIAdapter(), OPENAI_TEXT_RESPONSE, openai_sse(OPENAI_TEXT_CHUNKS), "gpt-4o"),
            (OpenAIAdapter(), OPENAI_TOOL_RESPONSE, openai_sse(OPENAI_TOOL_CHUNKS), "gpt-4o"),
            (GoogleAdapter(), GEMINI_TEXT_RESPONSE, gemini_sse(GEMINI_TEXT_CHUNKS), "gemini-2.5-flash"),
            (GoogleAdapter(), GEMINI_TOOL_RESPONSE, gemini_sse(GEMINI_TOOL_CHUNKS), "gemini-2.5-flash"),
            (
                GoogleAdapter(),
                GEMINI_MULTIPART_RESPONSE,
                gemini_sse(GEMINI_MULTIPART_CHUNKS),
                "gemini-2.5-flash",
            ),
        ],
        ids=["openai-text", "openai-tool", "gemini-text", "gemini-tool", "gemini-multipart"],
    )
    async def test_accumulated_stream_matches_non_stream(self, adapter, response, body, model):
        non_stream = WireToNativeConverter.convert_response(adapter.to_wire(response, model))

        encoder = NativeStreamEncoder(model, "req_test")
        events = await collect(encoder.encode(adapter.parse_stream(iter_lines(body), model)))

        assert_block_order(events)
        accumulated = accumulate_native_events(events)
        assert accumulated.model_dump(exclude_none=True) == non_stream.model_dump(exclude_none=True)


class TestOpenAIStreamParsing:
    """测试OpenAI流式分块解析"""

    @pytest.mark.asyncio
    async def test_tool_arguments_in_three_chunks(self):
        """测试参数分三块到达时只产生一个tool_use块"""
        adapter = OpenAIAdapter()
        encoder = NativeStreamEncoder("gpt-4o", "req_test")
        events = await collect(
            encoder.encode(adapter.parse_stream(iter_lines(openai_sse(OPENAI_TOOL_CHUNKS)), "gpt-4o"))
        )
        parsed = parse_sse_events("".join(events))

        starts = [data for event_type, data in parsed if event_type == "content_block_start"]
        assert len(starts) == 1
        assert starts[0]["content_block"]["type"] == "tool_use"
        assert starts[0]["content_block"]["id"] == "call_abc123"
        assert starts[0]["content_block"]["name"] == "get_weather"

        fragments = [
            data["delta"]["partial_json"]
            for event_type, data in parsed
            if event_type == "content_block_delta"
        ]
        assert fragments == ['{"location": ', '"Paris", "unit"', ': "celsius"}']

        message_delta = next(data for event_type, data in parsed if event_type == "message_delta")
        assert message_delta["delta"]["stop_reason"] == "tool_use"
        assert message_delta["usage"] == {"input_tokens": 40, "output_tokens": 18}

    @pytest.mark.asyncio
    async def test_deltas(self):
        deltas = await collect(
            OpenAIAdapter().parse_stream(iter_lines(openai_sse(OPENAI_TEXT_CHUNKS)), "gpt-4o")
        )
        assert deltas[0] == MessageInfoDelta(id="chatcmpl-text", model="gpt-4o")
        assert [d.text for d in deltas if isinstance(d, TextDelta)] == [
            "Hello! ",
            "How can I help ",
            "you today?",
        ]
        assert deltas[-2] == FinishDelta(stop_reason=StopReason.END_TURN)
        assert deltas[-1] == UsageDelta(usage=Usage(input_tokens=12, output_tokens=9))

    @pytest.mark.asyncio
    async def test_stream_without_finish_reason_is_interrupted(self):
        body = openai_sse(OPENAI_TEXT_CHUNKS[:3], done=False)
        with pytest.raises(StreamInterruptedError):
            await collect(OpenAIAdapter().parse_stream(iter_lines(body), "gpt-4o"))

    @pytest.mark.asyncio
    async def test_error_chunk_is_interrupted(self):
        body = openai_sse(OPENAI_TEXT_CHUNKS[:2], done=False) + b'data: {"error": {"message": "overloaded"}}\n\n'
        with pytest.raises(StreamInterruptedError, match="overloaded"):
            await collect(OpenAIAdapter().parse_stream(iter_lines(body), "gpt-4o"))

    @pytest.mark.asyncio
    async def test_unparseable_lines_are_skipped(self):
        body = b": keep-alive\n\ndata: {broken\n\n" + openai_sse(OPENAI_TEXT_CHUNKS)
        deltas = await collect(OpenAIAdapter().parse_stream(iter_lines(body), "gpt-4o"))
        assert any(isinstance(d, FinishDelta) for d in deltas)


class TestGoogleStreamParsing:
    """测试Gemini流式分块解析"""

    @pytest.mark.asyncio
    async def test_function_calls_get_sequential_indices(self):
        chunk = {
            "candidates": [
                {
                    "content": {
                        "role": "model",
                        "parts": [
                            {"functionCall": {"name": "a", "args": {"x": 1}}},
                            {"functionCall": {"name": "b", "args": {}}},
                        ],
                    },
                    "finishReason": "STOP",
                }
            ]
        }
        deltas = await collect(
            GoogleAdapter().parse_stream(iter_lines(gemini_sse([chunk])), "gemini-2.5-flash")
        )
        tool_calls = [d for d in deltas if isinstance(d, ToolCallDelta)]
        assert [(d.index, d.name, d.arguments) for d in tool_calls] == [
            (0, "a", '{"x": 1}'),
            (1, "b", "{}"),
        ]
        assert all(d.id.startswith("toolu_") for d in tool_calls)

    @pytest.mark.asyncio
    async def test_stream_without_finish_reason_is_interrupted(self):
        body = gemini_sse(GEMINI_TEXT_CHUNKS[:2])
        with pytest.raises(StreamInterruptedError):
            await collect(GoogleAdapter().parse_stream(iter_lines(body), "gemini-2.5-flash"))


class TestNativeStreamEncoder:
    """测试原生SSE事件编码"""

    @pytest.mark.asyncio
    async def test_text_stream_event_sequence(self):
        _, events = await encode(
            [
                MessageInfoDelta(id="msg_1", model="gpt-4o"),
                TextDelta(text="Hello"),
                TextDelta(text=" world"),
                FinishDelta(stop_reason=StopReason.END_TURN),
                UsageDelta(usage=Usage(input_tokens=3, output_tokens=2)),
            ]
        )
        assert event_types(events) == [
            "message_start",
            "ping",
            "content_block_start",
            "content_block_delta",
            "content_block_delta",
            "content_block_stop",
            "message_delta",
            "message_stop",
        ]

    @pytest.mark.asyncio
    async def test_text_then_tool_closes_text_block(self):
        encoder, events = await encode(
            [
                TextDelta(text="Let me check."),
                ToolCallDelta(index=0, id="call_1", name="lookup", arguments='{"q": "x"}'),
                FinishDelta(stop_reason=StopReason.END_TURN),
            ]
        )
        assert_block_order(events)
        message = accumulate_native_events(events)
        assert [block.type for block in message.content] == ["text", "tool_use"]
        assert message.content[1].input == {"q": "x"}
        # 包含工具调用的正常结束统一为tool_use
        assert message.stop_reason == "tool_use"
        assert message.id.startswith("msg_")
        assert encoder.state.stopped

    @pytest.mark.asyncio
    async def test_interleaved_tool_fragments_are_kept(self):
        """测试并行工具调用的参数分片交错到达时，每个调用的参数都完整"""
        encoder, events = await encode(
            [
                ToolCallDelta(index=0, id="call_1", name="f", arguments='{"x"'),
                ToolCallDelta(index=1, id="call_2", name="g", arguments='{"y": 2}'),
                ToolCallDelta(index=0, arguments=": 1}"),
                FinishDelta(stop_reason=StopReason.TOOL_USE),
            ]
        )
        assert_block_order(events)
        assert encoder.state.dropped_fragments == 0
        message = accumulate_native_events(events)
        assert [(block.id, block.name, block.input) for block in message.content] == [
            ("call_1", "f", {"x": 1}),
            ("call_2", "g", {"y": 2}),
        ]
        assert message.stop_reason == "tool_use"

    @pytest.mark.asyncio
    async def test_buffered_tool_call_collects_later_fragments(self):
        encoder, events = await encode(
            [
                ToolCallDelta(index=0, id="call_1", name="f", arguments="{}"),
                ToolCallDelta(index=1, id="call_2", name="g", arguments='{"q": '),
                ToolCallDelta(index=1, arguments='"a"'),
                ToolCallDelta(index=1, arguments="}"),
                FinishDelta(stop_reason=StopReason.TOOL_USE),
            ]
        )
        assert_block_order(events)
        message = accumulate_native_events(events)
        assert [block.input for block in message.content] == [{}, {"q": "a"}]

    @pytest.mark.asyncio
    async def test_interruption_drops_incomplete_buffered_tool_call(self):
        """测试流中断时参数不完整的缓存工具调用不会以残缺参数输出"""
        encoder, events = await encode(
            [
                ToolCallDelta(index=0, id="call_1", name="f", arguments='{"x": 1}'),
                ToolCallDelta(index=1, id="call_2", name="g", arguments='{"y": 2}'),
                ToolCallDelta(index=2, id="call_3", name="h", arguments='{"z": '),
                ErrorDelta(message="openai stream interrupted: reset"),
            ]
        )
        assert_block_order(events)
        message = accumulate_native_events(events)
        assert [block.name for block in message.content] == ["f", "g"]
        assert message.stop_reason == "error"
        assert encoder.state.dropped_fragments == 1

    @pytest.mark.asyncio
    async def test_tool_fragment_after_text_is_dropped(self):
        """测试文本块之后才到达的旧工具调用分片被丢弃并计数"""
        encoder, events = await encode(
            [
                ToolCallDelta(index=0, id="call_1", name="f", arguments='{"x": 1}'),
                TextDelta(text="done"),
                ToolCallDelta(index=0, arguments=" "),
                FinishDelta(stop_reason=StopReason.END_TURN),
            ]
        )
        assert_block_order(events)
        assert encoder.state.dropped_fragments == 1
        message = accumulate_native_events(events)
        assert [block.type for block in message.content] == ["tool_use", "text"]

    @pytest.mark.asyncio
    async def test_empty_text_is_ignored(self):
        _, events = await encode([TextDelta(text=""), FinishDelta(stop_reason=StopReason.END_TURN)])
        assert "content_block_start" not in event_types(events)

    @pytest.mark.asyncio
    async def test_content_after_finish_is_ignored(self):
        _, events = await encode(
            [
                TextDelta(text="done"),
                FinishDelta(stop_reason=StopReason.MAX_TOKENS),
                TextDelta(text="late"),
            ]
        )
        message = accumulate_native_events(events)
        assert [block.text for block in message.content] == ["done"]
        assert message.stop_reason == "max_tokens"

    @pytest.mark.asyncio
    async def test_latest_usage_wins(self):
        _, events = await encode(
            [
                TextDelta(text="a"),
                UsageDelta(usage=Usage(input_tokens=5, output_tokens=1)),
                UsageDelta(usage=Usage(input_tokens=5, output_tokens=7)),
                FinishDelta(stop_reason=StopReason.END_TURN),
            ]
        )
        assert accumulate_native_events(events).usage.output_tokens == 7

    @pytest.mark.asyncio
    async def test_interruption_after_content(self):
        """测试已有内容时中断只关闭打开的块，不追加错误文本"""
        _, events = await encode(
            [
                MessageInfoDelta(id="msg_1", model="gpt-4o"),
                TextDelta(text="partial"),
                ErrorDelta(message="openai stream interrupted: reset"),
                TextDelta(text="never sent"),
            ]
        )
        assert_block_order(events)
        message = accumulate_native_events(events)
        assert message.stop_reason == "error"
        assert [block.text for block in message.content] == ["partial"]

    @pytest.mark.asyncio
    async def test_failure_before_content(self):
        """测试尚无内容时失败，产生一个描述错误的文本块"""
        _, events = await encode(
            [ErrorDelta(message="openai backend error (HTTP 401): bad key", before_content=True)]
        )
        assert_block_order(events)
        message = accumulate_native_events(events)
        assert message.stop_reason == "error"
        assert [block.text for block in message.content] == [
            "openai backend error (HTTP 401): bad key"
        ]

    @pytest.mark.asyncio
    async def test_failure_after_finish_adds_no_block(self):
        _, events = await encode(
            [
                FinishDelta(stop_reason=StopReason.END_TURN),
                ErrorDelta(message="late failure"),
            ]
        )
        message = accumulate_native_events(events)
        assert message.content == []
        assert message.stop_reason == "error"

    @pytest.mark.asyncio
    async def test_unexpected_exception_ends_stream_with_error(self):
        async def broken():
            yield TextDelta(text="partial")
            raise ValueError("boom")

        encoder = NativeStreamEncoder("gpt-4o", "req_test")
        events = await collect(encoder.encode(broken()))
        assert_block_order(events)
        assert accumulate_native_events(events).stop_reason == "error"
        assert encoder.state.phase == StreamPhase.STOPPED

    def test_illegal_transition(self):
        encoder = NativeStreamEncoder("gpt-4o")
        with pytest.raises(RuntimeError):
            encoder.state.transition(StreamPhase.FINISHED)


class TestSSEHelpers:
    """测试SSE格式化与解析"""

    def test_format_and_parse(self):
        event = format_event("ping", {"type": "ping"})
        assert event == 'event: ping\ndata: {"type": "ping"}\n\n'
        assert parse_sse_events(event) == [("ping", {"type": "ping"})]

    def test_accumulate_empty_stream(self):
        message = accumulate_native_events([])
        assert message.content == []
        assert message.stop_reason is None
