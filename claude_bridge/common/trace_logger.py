"""事务追踪日志（JSON Lines）

每条记录一行自包含的JSON，只追加写入，进程中途崩溃时之前的记录仍可解析。
record() 只入队不等待；后台任务用 aiofiles 追加写入。
日志失败只记录警告，绝不影响请求本身。
"""

import asyncio
import itertools
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiofiles
from loguru import logger


class Direction:
    """记录方向常量"""

    NATIVE_IN = "native-in"
    PROVIDER_OUT = "provider-out"
    PROVIDER_IN = "provider-in"
    NATIVE_OUT = "native-out"


def decode_body(raw: bytes | str | None) -> Any:
    """尽量把请求/响应体解析为JSON，失败时保留原始文本"""
    if raw is None:
        return None
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class TraceLogger:
    """追加式事务日志

    Args:
        path: 日志文件路径，为None时日志器禁用
        max_pending: 队列上限，超出时丢弃记录
    """

    def __init__(self, path: str | Path | None, max_pending: int = 1000):
        self.path = Path(path) if path is not None else None
        self._sequence = itertools.count(1)
        self._max_pending = max_pending
        self._queue: asyncio.Queue | None = None
        self._writer: asyncio.Task | None = None
        self.dropped = 0

    @classmethod
    def from_config(cls, config) -> "TraceLogger":
        """根据配置创建日志器，未开启debug/trace时返回禁用的实例"""
        if not config.logging_enabled:
            return cls(None)
        filename = "trace.jsonl" if config.trace else "requests.jsonl"
        return cls(config.log_path / filename)

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def record(
        self,
        transaction_id: str,
        direction: str,
        body: Any,
        **extra: Any,
    ) -> None:
        """记录一条事务日志（非阻塞）"""
        if not self.enabled:
            return

        entry = {
            "seq": next(self._sequence),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "transaction_id": transaction_id,
            "direction": direction,
            "body": body,
        }
        entry.update(extra)

        try:
            queue = self._ensure_writer()
            queue.put_nowait(entry)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"追踪日志队列已满，丢弃记录 - seq: {entry['seq']}")
        except RuntimeError as e:
            # 没有运行中的事件循环
            self.dropped += 1
            logger.warning(f"追踪日志记录失败 - Error: {e}")

    def _ensure_writer(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._max_pending)
        if self._writer is None or self._writer.done():
            self._writer = asyncio.get_running_loop().create_task(self._drain(self._queue))
        return self._queue

    async def _drain(self, queue: asyncio.Queue) -> None:
        """后台写入任务"""
        while True:
            entry = await queue.get()
            try:
                await self._append(entry)
            except (OSError, TypeError, ValueError) as e:
                logger.warning(
                    f"追踪日志写入失败 - Error: {e}, seq: {entry.get('seq')}"
                )
            finally:
                queue.task_done()

    async def _append(self, entry: dict[str, Any]) -> None:
        line = json.dumps(entry, ensure_ascii=False, default=str)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.path, "a", encoding="utf-8") as f:
            await f.write(line + "\n")

    async def flush(self) -> None:
        """等待已入队的记录全部写入"""
        if self._queue is not None and self._writer is not None:
            await self._queue.join()

    async def aclose(self) -> None:
        """写完剩余记录后停止后台任务"""
        await self.flush()
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None
