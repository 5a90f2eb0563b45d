"""Transformation request record."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransformationStatus(str, Enum):
    """Status of a transformation request."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransformationStatus.COMPLETED, TransformationStatus.FAILED)


# Forward order; terminal states share the last rank.
_STATUS_RANK = {
    TransformationStatus.PENDING: 0,
    TransformationStatus.PROCESSING: 1,
    TransformationStatus.COMPLETED: 2,
    TransformationStatus.FAILED: 2,
}

_IMMUTABLE_FIELDS = {"id", "source_path", "effect", "user_id", "created_at"}

_TELEMETRY_FIELDS = {"frames", "fps", "speed", "time", "size"}


class TransformationRequest(BaseModel):
    """Persisted record tracking one remote transformation end-to-end.

    Created by the client with ``status=pending``; afterwards only the
    worker mutates it, always through :meth:`advance`.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    source_path: str = Field(..., description="Storage path of the original upload")
    effect: str = Field(..., description="Effect catalog key")
    user_id: str = Field(..., description="Owning principal")
    status: TransformationStatus = TransformationStatus.PENDING
    progress: int = Field(0, ge=0, le=100)

    # Best-effort encoder telemetry
    frames: int = Field(0, ge=0)
    fps: float = Field(0.0, ge=0)
    speed: float = Field(0.0, ge=0, description="Throughput in kbit/s")
    time: str = Field("00:00:00", description="Elapsed media timestamp")
    size: int = Field(0, ge=0, description="Output size estimate in kB")

    transformed_path: str | None = Field(None, description="Storage path of the result")
    error: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _check_completion(self) -> TransformationRequest:
        if self.status == TransformationStatus.COMPLETED and not self.transformed_path:
            raise ValueError("completed transformation requires transformed_path")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance(self, **changes: Any) -> TransformationRequest:
        """Return a new snapshot with ``changes`` applied.

        Raises:
            ValueError: If the change violates a record invariant.
        """
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown fields: {sorted(unknown)}")
        frozen = _IMMUTABLE_FIELDS & set(changes)
        if frozen:
            raise ValueError(f"Immutable fields: {sorted(frozen)}")

        if self.is_terminal:
            raise ValueError(f"Transformation {self.id} is already {self.status.value}")

        status = TransformationStatus(changes.get("status", self.status))
        if _STATUS_RANK[status] < _STATUS_RANK[self.status]:
            raise ValueError(f"Cannot move from {self.status.value} to {status.value}")

        if "progress" in changes and self.status == status == TransformationStatus.PROCESSING:
            if changes["progress"] < self.progress:
                raise ValueError(
                    f"Progress may not decrease ({self.progress} -> {changes['progress']})"
                )

        if "transformed_path" in changes:
            if self.transformed_path is not None:
                raise ValueError("transformed_path is already set")
            if status != TransformationStatus.COMPLETED:
                raise ValueError("transformed_path is only set on completion")

        data = self.model_dump()
        data.update(changes)
        data["updated_at"] = _utcnow()
        return type(self).model_validate(data)

    def telemetry(self) -> dict[str, Any]:
        """Return the telemetry fields as a dict."""
        return {name: getattr(self, name) for name in sorted(_TELEMETRY_FIELDS)}
