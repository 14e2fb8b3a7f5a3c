"""
Stage task queue.

Stages chain into each other without awaiting (a finished extraction
schedules budget design, a finished design schedules allocation). Jobs go
through this queue so that failures are logged in one place and the chain
can be drained deterministically in tests.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from labsync.logging_config import get_logger

logger = get_logger("task_queue")

StageHandler = Callable[[str], Awaitable[object]]


@dataclass(frozen=True)
class StageJob:
    stage: str  # "extract" | "design" | "allocate"
    entity_id: str


class StageTaskQueue:
    def __init__(self):
        self._queue: asyncio.Queue[StageJob] = asyncio.Queue()
        self._handlers: dict[str, StageHandler] = {}
        self._worker: Optional[asyncio.Task] = None
        self.processed = 0
        self.failed = 0

    def register(self, stage: str, handler: StageHandler) -> None:
        self._handlers[stage] = handler

    def enqueue(self, stage: str, entity_id: str) -> None:
        """Schedule a stage run. Returns immediately."""
        if stage not in self._handlers:
            raise ValueError(f"No handler registered for stage '{stage}'")
        self._queue.put_nowait(StageJob(stage, entity_id))
        logger.debug(f"Enqueued {stage} for {entity_id}")

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="stage-task-queue")
        logger.info("Stage task queue started")

    async def stop(self) -> None:
        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
            logger.info("Stage task queue stopped")

    async def join(self) -> None:
        """Wait until every enqueued job (including ones enqueued by jobs) has run."""
        await self._queue.join()

    async def run_pending(self) -> None:
        """Run queued jobs inline until the queue is empty. For use without a worker."""
        while not self._queue.empty():
            job = self._queue.get_nowait()
            try:
                await self._execute(job)
            finally:
                self._queue.task_done()

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._execute(job)
            finally:
                self._queue.task_done()

    async def _execute(self, job: StageJob) -> None:
        handler = self._handlers[job.stage]
        try:
            await handler(job.entity_id)
            self.processed += 1
            logger.info(f"Background {job.stage} completed for {job.entity_id}")
        except Exception as e:
            self.failed += 1
            logger.error(f"Background {job.stage} failed for {job.entity_id}: {e}", exc_info=True)
