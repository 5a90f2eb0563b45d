"""Job manager that runs the worker for newly inserted records."""

from __future__ import annotations

import asyncio
import logging

from vidfx.models.transformation import TransformationRequest
from vidfx.worker.task import TransformWorker, WorkerPayload

logger = logging.getLogger(__name__)


class JobManager:
    """Schedules worker runs in the background with concurrency control.

    Registered as the repository's insert hook, so creating a record is
    enough to start processing it. Background execution uses
    asyncio.create_task with a semaphore for concurrency limiting.
    """

    def __init__(self, worker: TransformWorker, max_concurrent: int = 2) -> None:
        self.worker = worker
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def schedule(self, record: TransformationRequest) -> None:
        """Start processing ``record`` in the background."""
        if record.is_terminal or record.id in self._tasks:
            return
        payload = WorkerPayload.from_record(record)
        task = asyncio.create_task(self._run_job(payload))
        self._tasks[record.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(record.id, None))
        logger.info("Scheduled transformation %s", record.id)

    @property
    def active(self) -> int:
        return len(self._tasks)

    async def _run_job(self, payload: WorkerPayload) -> None:
        """Execute a job with semaphore-based concurrency control."""
        async with self._semaphore:
            try:
                await self.worker.run(payload)
            except Exception:
                # the worker already recorded the failure on the record
                logger.exception("Job %s failed", payload.transformation_id)

    async def drain(self) -> None:
        """Wait for all scheduled jobs to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding jobs and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
