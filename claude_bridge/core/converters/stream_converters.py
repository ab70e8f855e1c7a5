"""
原生流式事件编码

供应商流解析器产出与供应商无关的增量（StreamDelta），这里把增量编码为原生
SSE 事件序列。每个响应一个 StreamState 状态机：同一时刻最多一个打开的内容块，
块 n 的 content_block_stop 一定先于块 n+1 的 content_block_start。
"""

import json
from collections.abc import AsyncIterator, Iterable
from enum import Enum
from typing import Any

from claude_bridge.common.logging import get_logger_with_request_id
from claude_bridge.models.anthropic import (
    AnthropicContentTypes,
    AnthropicMessageResponse,
    AnthropicPing,
    AnthropicStreamContentBlock,
    AnthropicStreamContentBlockStart,
    AnthropicStreamContentBlockStop,
    AnthropicStreamEventTypes,
    AnthropicStreamMessage,
    AnthropicStreamMessageStartMessage,
    AnthropicUsage,
    ContentBlock,
    Delta,
    MessageDelta,
)
from claude_bridge.models.wire import (
    ErrorDelta,
    FinishDelta,
    MessageInfoDelta,
    StopReason,
    StreamDelta,
    TextDelta,
    ToolCallDelta,
    Usage,
    UsageDelta,
    resolve_stop_reason,
)

from .base import generate_message_id, generate_tool_use_id, safe_json_parse


def format_event(event_type: str, data: dict[str, Any]) -> str:
    """格式化事件为 SSE 格式"""
    return f"event: {event_type}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


class StreamPhase(str, Enum):
    """流状态"""

    # 尚未发出 message_start
    IDLE = "idle"
    # 已发出 message_start，没有打开的内容块
    STARTED = "started"
    # 有一个打开的内容块
    IN_BLOCK = "in_block"
    # 后端已发出完成信号，等待usage
    FINISHED = "finished"
    # 已发出 message_stop
    STOPPED = "stopped"


# 合法的状态转换
PHASE_TRANSITIONS = {
    StreamPhase.IDLE: {StreamPhase.STARTED},
    StreamPhase.STARTED: {StreamPhase.IN_BLOCK, StreamPhase.FINISHED, StreamPhase.STOPPED},
    StreamPhase.IN_BLOCK: {
        StreamPhase.IN_BLOCK,
        StreamPhase.STARTED,
        StreamPhase.FINISHED,
        StreamPhase.STOPPED,
    },
    StreamPhase.FINISHED: {StreamPhase.STOPPED},
    StreamPhase.STOPPED: set(),
}


class OpenBlock:
    """当前打开的内容块"""

    def __init__(self, index: int, block_type: str, tool_index: int | None = None):
        self.index = index
        self.type = block_type
        self.tool_index = tool_index


class PendingToolCall:
    """另一个工具块打开期间到达的工具调用，参数先缓存"""

    def __init__(self, id: str | None, name: str | None):
        self.id = id
        self.name = name
        self.fragments: list[str] = []

    @property
    def arguments(self) -> str:
        return "".join(self.fragments)

    def is_complete(self) -> bool:
        try:
            return isinstance(json.loads(self.arguments), dict)
        except json.JSONDecodeError:
            return False


class StreamState:
    """流状态管理类"""

    def __init__(self, message_id: str | None = None, model: str = ""):
        self.phase = StreamPhase.IDLE
        self.message_id = message_id
        self.model = model
        # 下一个内容块索引
        self.content_index = 0
        self.open_block: OpenBlock | None = None
        # 已输出过内容块的后端工具调用索引
        self.seen_tool_indices: set[int] = set()
        # 按首次到达顺序缓存的工具调用
        self.pending_tools: dict[int, PendingToolCall] = {}
        self.has_tool_use = False

        self.usage = Usage()
        self.stop_reason: StopReason | None = None
        self.stop_sequence: str | None = None

        # 计数器
        self.total_deltas = 0
        self.text_chars = 0
        self.dropped_fragments = 0

    def transition(self, phase: StreamPhase) -> None:
        if phase not in PHASE_TRANSITIONS[self.phase]:
            raise RuntimeError(f"illegal stream transition {self.phase.value} -> {phase.value}")
        self.phase = phase

    @property
    def stopped(self) -> bool:
        return self.phase == StreamPhase.STOPPED


class NativeStreamEncoder:
    """将流式增量编码为原生SSE事件"""

    def __init__(self, model: str, request_id: str = None):
        self.state = StreamState(model=model)
        self.request_id = request_id
        self._logger = get_logger_with_request_id(request_id)

    # ---- 事件构造 ----

    def _message_start(self) -> list[str]:
        state = self.state
        if state.message_id is None:
            state.message_id = generate_message_id()
        state.transition(StreamPhase.STARTED)

        message_start = AnthropicStreamMessage(
            type=AnthropicStreamEventTypes.MESSAGE_START,
            message=AnthropicStreamMessageStartMessage(
                id=state.message_id,
                model=state.model,
                usage=AnthropicUsage(),
            ),
        )
        return [
            format_event(
                AnthropicStreamEventTypes.MESSAGE_START,
                message_start.model_dump(exclude_none=True),
            ),
            format_event(AnthropicStreamEventTypes.PING, AnthropicPing().model_dump()),
        ]

    def _ensure_started(self) -> list[str]:
        if self.state.phase == StreamPhase.IDLE:
            return self._message_start()
        return []

    def _open_block(self, content_block: ContentBlock, tool_index: int | None = None) -> list[str]:
        state = self.state
        events = self.close_block()
        state.open_block = OpenBlock(state.content_index, content_block.type, tool_index)
        state.content_index += 1
        state.transition(StreamPhase.IN_BLOCK)

        content_block_start = AnthropicStreamContentBlockStart(
            index=state.open_block.index, content_block=content_block
        )
        events.append(
            format_event(
                AnthropicStreamEventTypes.CONTENT_BLOCK_START,
                content_block_start.model_dump(exclude_none=True),
            )
        )
        return events

    def close_block(self) -> list[str]:
        state = self.state
        if state.open_block is None:
            return []

        content_block_stop = AnthropicStreamContentBlockStop(index=state.open_block.index)
        state.open_block = None
        state.transition(StreamPhase.STARTED)
        return [
            format_event(
                AnthropicStreamEventTypes.CONTENT_BLOCK_STOP,
                content_block_stop.model_dump(exclude_none=True),
            )
        ]

    def _block_delta(self, delta: Delta) -> str:
        chunk = AnthropicStreamContentBlock(index=self.state.open_block.index, delta=delta)
        return format_event(
            AnthropicStreamEventTypes.CONTENT_BLOCK_DELTA,
            chunk.model_dump(exclude_none=True),
        )

    def _message_end(self, stop_reason: StopReason) -> list[str]:
        state = self.state
        state.transition(StreamPhase.STOPPED)

        message_delta = AnthropicStreamMessage(
            type=AnthropicStreamEventTypes.MESSAGE_DELTA,
            delta=MessageDelta(
                stop_reason=stop_reason.value, stop_sequence=state.stop_sequence
            ),
            usage=AnthropicUsage(
                input_tokens=state.usage.input_tokens,
                output_tokens=state.usage.output_tokens,
            ),
        )
        message_stop = AnthropicStreamMessage(type=AnthropicStreamEventTypes.MESSAGE_STOP)
        return [
            format_event(
                AnthropicStreamEventTypes.MESSAGE_DELTA,
                message_delta.model_dump(exclude_none=True),
            ),
            format_event(
                AnthropicStreamEventTypes.MESSAGE_STOP,
                message_stop.model_dump(exclude_none=True),
            ),
        ]

    # ---- 增量处理 ----

    def feed(self, delta: StreamDelta) -> list[str]:
        """处理一个增量，返回可以立即发出的事件"""
        state = self.state
        state.total_deltas += 1

        if state.stopped:
            return []

        if isinstance(delta, MessageInfoDelta):
            if state.phase == StreamPhase.IDLE:
                state.message_id = delta.id
                state.model = delta.model or state.model
                return self._message_start()
            return []

        if isinstance(delta, UsageDelta):
            # 后端可能多次发送累计值，保留最后一次
            state.usage = delta.usage
            return []

        if isinstance(delta, ErrorDelta):
            return self.fail(delta.message)

        if state.phase == StreamPhase.FINISHED:
            self._logger.debug(f"完成信号之后的增量已忽略 - kind: {delta.kind}")
            return []

        if isinstance(delta, TextDelta):
            return self._process_text(delta)
        if isinstance(delta, ToolCallDelta):
            return self._process_tool_call(delta)
        if isinstance(delta, FinishDelta):
            return self._process_finish(delta)
        return []

    def _process_text(self, delta: TextDelta) -> list[str]:
        """处理普通文本内容"""
        if not delta.text:
            return []

        state = self.state
        events = self._ensure_started()
        if state.open_block is None or state.open_block.type != AnthropicContentTypes.TEXT:
            events.extend(self._close_tool_blocks())
            events.extend(self._open_block(ContentBlock(type=AnthropicContentTypes.TEXT, text="")))

        state.text_chars += len(delta.text)
        events.append(
            self._block_delta(Delta(type=AnthropicContentTypes.TEXT_DELTA, text=delta.text))
        )
        return events

    def _open_tool_block(self, tool_index: int, id: str | None, name: str | None) -> list[str]:
        state = self.state
        state.seen_tool_indices.add(tool_index)
        state.has_tool_use = True
        return self._open_block(
            ContentBlock(
                type=AnthropicContentTypes.TOOL_USE,
                id=id or generate_tool_use_id(),
                name=name or "",
                input={},
            ),
            tool_index=tool_index,
        )

    def _arguments_delta(self, arguments: str) -> str:
        return self._block_delta(
            Delta(type=AnthropicContentTypes.INPUT_JSON_DELTA, partial_json=arguments)
        )

    def _process_tool_call(self, delta: ToolCallDelta) -> list[str]:
        """处理工具调用

        第一个工具调用的参数分片以 input_json_delta 即时转发。它的块打开期间
        到达的其他工具调用先按索引缓存，等这个块关闭后作为完整的块输出，
        交错到达的分片因此不会丢失。
        """
        state = self.state
        events = self._ensure_started()
        open_block = state.open_block
        tool_block_open = (
            open_block is not None and open_block.type == AnthropicContentTypes.TOOL_USE
        )

        if tool_block_open and open_block.tool_index == delta.index:
            if delta.arguments:
                events.append(self._arguments_delta(delta.arguments))
            return events

        pending = state.pending_tools.get(delta.index)
        if pending is not None:
            pending.id = pending.id or delta.id
            pending.name = pending.name or delta.name
            pending.fragments.append(delta.arguments)
            return events

        if delta.index in state.seen_tool_indices:
            # 文本块之后再到达的旧工具调用分片，块已输出无法补发
            state.dropped_fragments += 1
            self._logger.warning(
                f"工具调用分片到达时对应内容块已输出，已丢弃 - tool_index: {delta.index}"
            )
            return events

        if tool_block_open:
            pending = PendingToolCall(delta.id, delta.name)
            pending.fragments.append(delta.arguments)
            state.pending_tools[delta.index] = pending
            return events

        events.extend(self._open_tool_block(delta.index, delta.id, delta.name))
        if delta.arguments:
            events.append(self._arguments_delta(delta.arguments))
        return events

    def _close_tool_blocks(self, complete_only: bool = False) -> list[str]:
        """
        关闭打开的块并输出缓存的工具调用

        Args:
            complete_only: 流异常结束时只输出参数是完整JSON的调用
        """
        state = self.state
        events = self.close_block()
        for tool_index, pending in state.pending_tools.items():
            if complete_only and not pending.is_complete():
                state.dropped_fragments += len(pending.fragments)
                self._logger.warning(
                    f"流中断时工具调用参数不完整，已丢弃 - tool_index: {tool_index}, "
                    f"name: {pending.name}"
                )
                continue
            events.extend(self._open_tool_block(tool_index, pending.id, pending.name))
            if pending.arguments:
                events.append(self._arguments_delta(pending.arguments))
            events.extend(self.close_block())
        state.pending_tools.clear()
        return events

    def _process_finish(self, delta: FinishDelta) -> list[str]:
        """处理完成信号：关闭打开的块，message_delta 等usage到齐后再发"""
        state = self.state
        events = self._ensure_started()
        events.extend(self._close_tool_blocks())
        state.stop_reason = delta.stop_reason
        state.stop_sequence = delta.stop_sequence
        state.transition(StreamPhase.FINISHED)
        return events

    # ---- 结束 ----

    def finish(self) -> list[str]:
        """后端流正常结束，发出收尾事件序列"""
        state = self.state
        if state.stopped:
            return []

        events = self._ensure_started()
        events.extend(self._close_tool_blocks())
        stop_reason = resolve_stop_reason(
            state.stop_reason or StopReason.END_TURN, state.has_tool_use
        )
        events.extend(self._message_end(stop_reason))
        self._log_stream_completion_details(stop_reason)
        return events

    def fail(self, message: str) -> list[str]:
        """
        后端失败或流中断时合成收尾事件序列，停止原因为error

        尚未产出任何内容块时附加一个描述错误的文本块，已有内容时关闭打开的块，
        缓存的工具调用只输出参数完整的。
        """
        state = self.state
        if state.stopped:
            return []

        events = self._ensure_started()
        if state.content_index == 0 and state.phase != StreamPhase.FINISHED:
            events.extend(self._open_block(ContentBlock(type=AnthropicContentTypes.TEXT, text="")))
            events.append(
                self._block_delta(Delta(type=AnthropicContentTypes.TEXT_DELTA, text=message))
            )
        events.extend(self._close_tool_blocks(complete_only=True))
        events.extend(self._message_end(StopReason.ERROR))

        self._logger.warning(
            f"流式响应以错误结束 - Error: {message}, blocks: {state.content_index}"
        )
        self._log_stream_completion_details(StopReason.ERROR)
        return events

    def _log_stream_completion_details(self, stop_reason: StopReason) -> None:
        state = self.state
        self._logger.info(
            f"流式响应完成 - stop_reason: {stop_reason.value}, blocks: {state.content_index}, "
            f"text_chars: {state.text_chars}, deltas: {state.total_deltas}, "
            f"usage: {state.usage.input_tokens}/{state.usage.output_tokens}"
        )
        if state.dropped_fragments:
            self._logger.warning(f"丢弃的工具调用分片数量: {state.dropped_fragments}")

    async def encode(self, deltas: AsyncIterator[StreamDelta]) -> AsyncIterator[str]:
        """
        消费增量流并逐个产出SSE事件

        Args:
            deltas: 供应商无关的增量流

        Yields:
            str: 原生SSE事件文本
        """
        try:
            async for delta in deltas:
                for event in self.feed(delta):
                    yield event
                if self.state.stopped:
                    return
        except Exception as e:
            self._logger.exception(f"流式编码异常 - Error: {e}")
            for event in self.fail(f"Bridge stream error: {e}"):
                yield event
            return

        for event in self.finish():
            yield event


def parse_sse_events(text: str) -> list[tuple[str, dict[str, Any]]]:
    """解析SSE文本为 (事件类型, 数据) 列表"""
    parsed = []
    for raw_event in text.split("\n\n"):
        event_type = None
        data_lines = []
        for line in raw_event.splitlines():
            if line.startswith("event:"):
                event_type = line[6:].strip()
            elif line.startswith("data:"):
                data_lines.append(line[5:].strip())
        if event_type and data_lines:
            parsed.append((event_type, json.loads("\n".join(data_lines))))
    return parsed


def accumulate_native_events(events: Iterable[str]) -> AnthropicMessageResponse:
    """
    将原生SSE事件拼接还原为完整的消息响应

    用于追踪日志记录重建后的消息，以及流式与非流式一致性校验。
    """
    message: dict[str, Any] = {}
    blocks: dict[int, dict[str, Any]] = {}
    partial_json: dict[int, list[str]] = {}
    usage = AnthropicUsage()

    for event_type, data in parse_sse_events("".join(events)):
        if event_type == AnthropicStreamEventTypes.MESSAGE_START:
            message = data["message"]
            usage = AnthropicUsage(**message.get("usage", {}))
        elif event_type == AnthropicStreamEventTypes.CONTENT_BLOCK_START:
            blocks[data["index"]] = dict(data["content_block"])
        elif event_type == AnthropicStreamEventTypes.CONTENT_BLOCK_DELTA:
            delta = data["delta"]
            block = blocks[data["index"]]
            if delta["type"] == AnthropicContentTypes.TEXT_DELTA:
                block["text"] = block.get("text", "") + delta["text"]
            elif delta["type"] == AnthropicContentTypes.INPUT_JSON_DELTA:
                partial_json.setdefault(data["index"], []).append(delta["partial_json"])
        elif event_type == AnthropicStreamEventTypes.MESSAGE_DELTA:
            message["stop_reason"] = data["delta"].get("stop_reason")
            message["stop_sequence"] = data["delta"].get("stop_sequence")
            if data.get("usage"):
                usage = AnthropicUsage(**data["usage"])

    content = []
    for index in sorted(blocks):
        block = blocks[index]
        if block["type"] == AnthropicContentTypes.TOOL_USE:
            block["input"] = safe_json_parse("".join(partial_json.get(index, [])))
        content.append(block)

    return AnthropicMessageResponse(
        id=message.get("id", ""),
        model=message.get("model", ""),
        content=content,
        stop_reason=message.get("stop_reason"),
        stop_sequence=message.get("stop_sequence"),
        usage=usage,
    )
