# events.py

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from config import USAGE_QUEUE_SIZE
from utils import log


@dataclass
class UsageEvent:
    template_id: str
    document_type: str
    user_email: str
    supplier: Optional[str] = None
    prompt_system: str = "managed"
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def payload(self) -> dict:
        data = asdict(self)
        data.pop("template_id")
        return data


UsageSink = Callable[[str, dict], Awaitable[None]]


class UsageEventQueue:
    """
    Outbound queue for template usage tracking. Publishing never blocks or
    raises; a background task drains events to the sink and logs failures.
    """

    def __init__(self, sink: Optional[UsageSink], maxsize: int = USAGE_QUEUE_SIZE):
        self._sink = sink
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self.dropped = 0
        self.delivered = 0
        self.failed = 0

    def publish(self, event: UsageEvent) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            log.warning(f"Usage queue full; dropped event for template '{event.template_id}'.")
            return False

    def pending(self) -> int:
        return self._queue.qsize()

    async def _deliver(self, event: UsageEvent):
        if self._sink is None:
            return
        try:
            await self._sink(event.template_id, event.payload())
            self.delivered += 1
        except Exception as e:
            self.failed += 1
            log.warning(f"Usage tracking for template '{event.template_id}' failed: {e}")

    async def run(self):
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def drain(self):
        """Delivers everything currently queued. Used on shutdown and in tests."""
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self.run())
            log.info("Usage event worker started.")

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.drain()
        log.info(f"Usage event worker stopped (delivered={self.delivered}, failed={self.failed}, dropped={self.dropped}).")
