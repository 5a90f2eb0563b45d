"""Client-side processing models: stages, modes, metrics, selections."""

from __future__ import annotations

import mimetypes
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, computed_field, model_validator

from vidfx.errors import InputError
from vidfx.models.transformation import TransformationRequest


class Stage(str, Enum):
    """Top-level orchestrator state."""

    UPLOAD = "upload"
    PROCESSING = "processing"
    COMPLETE = "complete"


class ProcessingMode(str, Enum):
    """Execution strategy selector."""

    CLIENT = "client"
    REMOTE = "remote"


class Principal(BaseModel):
    """A signed-in user with an opaque identity token."""

    user_id: str
    access_token: str


class AccessToken(BaseModel):
    """Short-lived credential scoped to one transformation's updates."""

    token: str
    request_id: str
    expires_at: datetime


class SelectedFile(BaseModel):
    """A local video file chosen for processing."""

    path: Path
    name: str
    content_type: str
    size: int = Field(..., ge=0)

    @classmethod
    def from_path(cls, path: Path | str) -> SelectedFile:
        """Build a selection from a path, rejecting non-video files.

        Raises:
            InputError: If the file is missing or is not a video.
        """
        path = Path(path)
        if not path.is_file():
            raise InputError(f"File not found: {path}")
        content_type, _ = mimetypes.guess_type(path.name)
        if not content_type or not content_type.startswith("video/"):
            raise InputError(f"Please select a video file (got {path.name})")
        return cls(
            path=path,
            name=path.name,
            content_type=content_type,
            size=path.stat().st_size,
        )


class UploadProgressState(BaseModel):
    """Byte-level upload progress."""

    bytes_uploaded: int = Field(0, ge=0)
    bytes_total: int = Field(0, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> UploadProgressState:
        if self.bytes_uploaded > self.bytes_total:
            raise ValueError("bytes_uploaded cannot exceed bytes_total")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def percentage(self) -> float:
        if self.bytes_total == 0:
            return 0.0
        pct = self.bytes_uploaded / self.bytes_total * 100
        return round(min(max(pct, 0.0), 100.0), 2)


class LocalMetrics(BaseModel):
    """Progress reported by the in-process engine."""

    kind: Literal["local"] = "local"
    progress: int = Field(0, ge=0, le=100)
    time: str = "00:00:00"


class RemoteMetrics(BaseModel):
    """Progress reported by the remote worker through the record."""

    kind: Literal["remote"] = "remote"
    progress: int = Field(0, ge=0, le=100)
    time: str = "00:00:00"
    fps: float = 0.0
    speed: float = 0.0
    frames: int = 0
    size: int = 0

    @classmethod
    def from_record(cls, record: TransformationRequest) -> RemoteMetrics:
        return cls(progress=record.progress, **record.telemetry())


ProcessingMetrics = Annotated[LocalMetrics | RemoteMetrics, Field(discriminator="kind")]

_METRICS_KIND = {
    ProcessingMode.CLIENT: "local",
    ProcessingMode.REMOTE: "remote",
}


def metrics_kind(mode: ProcessingMode) -> str:
    """Return the metrics ``kind`` tag for a processing mode."""
    return _METRICS_KIND[mode]


def zero_metrics(mode: ProcessingMode) -> LocalMetrics | RemoteMetrics:
    """Return the zero state of the metrics kind matching ``mode``."""
    if mode == ProcessingMode.CLIENT:
        return LocalMetrics()
    return RemoteMetrics()
