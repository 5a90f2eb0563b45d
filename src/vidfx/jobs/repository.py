"""In-memory transformation record store with live watch streams."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from vidfx.errors import RecordNotFoundError
from vidfx.models.transformation import TransformationRequest

logger = logging.getLogger(__name__)

InsertHook = Callable[[TransformationRequest], Awaitable[None] | None]


class TransformationRepository:
    """Stores records in a dict and fans out every change to watchers.

    Insert hooks run after a record is stored; they are how record
    creation triggers background work. Each :meth:`watch` call gets its
    own queue, so a slow watcher never blocks the writer.
    """

    def __init__(self) -> None:
        self._records: dict[str, TransformationRequest] = {}
        self._watchers: dict[str, set[asyncio.Queue[TransformationRequest]]] = defaultdict(set)
        self._insert_hooks: list[InsertHook] = []
        self._lock = asyncio.Lock()

    def add_insert_hook(self, hook: InsertHook) -> None:
        self._insert_hooks.append(hook)

    async def insert(self, record: TransformationRequest) -> TransformationRequest:
        """Store a new record and fire insert hooks.

        Raises:
            ValueError: If a record with the same id already exists.
        """
        async with self._lock:
            if record.id in self._records:
                raise ValueError(f"Transformation {record.id} already exists")
            self._records[record.id] = record
        logger.info("Created transformation %s (effect=%s)", record.id, record.effect)

        for hook in self._insert_hooks:
            result = hook(record)
            if inspect.isawaitable(result):
                await result
        return record

    async def get(self, request_id: str) -> TransformationRequest:
        try:
            return self._records[request_id]
        except KeyError:
            raise RecordNotFoundError(f"Transformation not found: {request_id}") from None

    async def list_for_owner(self, user_id: str) -> list[TransformationRequest]:
        """List a user's records, most recent first."""
        records = [r for r in self._records.values() if r.user_id == user_id]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    async def update(self, request_id: str, **changes: Any) -> TransformationRequest:
        """Advance a record and notify its watchers.

        Raises:
            RecordNotFoundError: If the record does not exist.
            ValueError: If the change violates a record invariant.
        """
        async with self._lock:
            current = await self.get(request_id)
            updated = current.advance(**changes)
            self._records[request_id] = updated

        for queue in self._watchers.get(request_id, ()):
            queue.put_nowait(updated)
        return updated

    async def watch(self, request_id: str) -> AsyncIterator[TransformationRequest]:
        """Yield the current snapshot, then every change until terminal.

        Raises:
            RecordNotFoundError: If the record does not exist.
        """
        queue: asyncio.Queue[TransformationRequest] = asyncio.Queue()
        # register before reading so no update slips in between
        self._watchers[request_id].add(queue)
        try:
            record = await self.get(request_id)
            yield record
            while not record.is_terminal:
                record = await queue.get()
                yield record
        finally:
            watchers = self._watchers.get(request_id)
            if watchers is not None:
                watchers.discard(queue)
                if not watchers:
                    del self._watchers[request_id]

    def watcher_count(self, request_id: str) -> int:
        return len(self._watchers.get(request_id, ()))
