"""Service interfaces (Protocols) for vidfx.

These protocols define the contracts that storage and record-store
implementations must follow, so the worker and the API can run against
the filesystem adapter, the HTTP adapter, or a test double.
"""

from typing import Any, Protocol

from vidfx.models.transformation import TransformationRequest


class IObjectStorage(Protocol):
    """Interface for durable byte storage addressed by path."""

    async def exists(self, path: str) -> bool:
        ...

    async def download(self, path: str) -> bytes:
        """Fetch an object's bytes.

        Raises:
            StorageError: If the object is missing or unreadable.
        """
        ...

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str = "video/mp4",
        upsert: bool = True,
    ) -> str:
        """Store bytes at ``path`` and return the path."""
        ...

    async def signed_url(self, path: str, expires_in: int = 3600) -> str:
        """Return a time-limited URL that serves the object."""
        ...


class IRecordStore(Protocol):
    """Interface for reading and advancing transformation records."""

    async def get(self, request_id: str) -> TransformationRequest:
        """Fetch a record.

        Raises:
            RecordNotFoundError: If no record has this id.
        """
        ...

    async def update(self, request_id: str, **changes: Any) -> TransformationRequest:
        """Apply ``changes`` through :meth:`TransformationRequest.advance`."""
        ...
