"""Execution strategies behind the orchestrator.

Both strategies take the same inputs and report progress through the same
callbacks; only the kind of metrics they emit differs. The principal is
owned by the orchestrator and handed to every run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from vidfx.errors import AuthenticationError, ExecutionError
from vidfx.models.processing import (
    LocalMetrics,
    Principal,
    ProcessingMode,
    RemoteMetrics,
    SelectedFile,
    UploadProgressState,
)
from vidfx.models.transformation import TransformationStatus
from vidfx.services.local_engine import LocalExecutionEngine
from vidfx.services.remote import RemoteExecutionCoordinator
from vidfx.services.storage import download_filename, source_object_name
from vidfx.services.upload import ResumableUploader

logger = logging.getLogger(__name__)

MetricsCallback = Callable[[LocalMetrics | RemoteMetrics], None]
UploadCallback = Callable[[UploadProgressState], None]


class ExecutionStrategy(Protocol):
    """Interface for one way of running a transformation."""

    mode: ProcessingMode

    async def start(
        self,
        file: SelectedFile,
        effect_id: str,
        on_metrics: MetricsCallback,
        on_upload_progress: UploadCallback,
        principal: Principal | None = None,
    ) -> str:
        """Run the transformation and return a URL for the result."""
        ...

    async def cancel(self) -> None:
        ...


class LocalStrategy:
    """Runs the effect in-process and writes the result to ``output_dir``."""

    mode = ProcessingMode.CLIENT

    def __init__(self, engine: LocalExecutionEngine, output_dir: Path) -> None:
        self.engine = engine
        self.output_dir = Path(output_dir)

    async def start(
        self,
        file: SelectedFile,
        effect_id: str,
        on_metrics: MetricsCallback,
        on_upload_progress: UploadCallback,
        principal: Principal | None = None,
    ) -> str:
        data = await asyncio.to_thread(file.path.read_bytes)

        def _progress(percent: int, timemark: str) -> None:
            on_metrics(LocalMetrics(progress=percent, time=timemark))

        output = await self.engine.run(data, effect_id, _progress)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        target = self.output_dir / download_filename(file.name)
        await asyncio.to_thread(target.write_bytes, output)
        logger.info("Wrote %s (%d bytes)", target, len(output))
        return target.resolve().as_uri()

    async def cancel(self) -> None:
        self.engine.cancel()


class RemoteStrategy:
    """Uploads the file, submits a record and follows the worker's progress."""

    mode = ProcessingMode.REMOTE

    def __init__(
        self,
        uploader: ResumableUploader,
        coordinator: RemoteExecutionCoordinator,
    ) -> None:
        self.uploader = uploader
        self.coordinator = coordinator

    async def start(
        self,
        file: SelectedFile,
        effect_id: str,
        on_metrics: MetricsCallback,
        on_upload_progress: UploadCallback,
        principal: Principal | None = None,
    ) -> str:
        if principal is None:
            raise AuthenticationError("Sign in to use server-side processing")

        def _uploaded(sent: int, total: int) -> None:
            on_upload_progress(UploadProgressState(bytes_uploaded=sent, bytes_total=total))

        destination = source_object_name(principal.user_id, file.name)
        source_path = await self.uploader.upload(
            file.path,
            destination,
            principal.access_token,
            content_type=file.content_type,
            on_progress=_uploaded,
        )

        record = await self.coordinator.submit(
            source_path, effect_id, principal.user_id, principal=principal
        )
        token = await self.coordinator.issue_access_token(record.id, principal=principal)

        async for snapshot in self.coordinator.subscribe(record.id, token):
            on_metrics(RemoteMetrics.from_record(snapshot))
            if snapshot.status == TransformationStatus.COMPLETED:
                return await self.coordinator.result_url(record.id, principal=principal)
            if snapshot.status == TransformationStatus.FAILED:
                raise ExecutionError(snapshot.error or "Server-side processing failed")

        raise ExecutionError(f"Update stream for {record.id} ended before completion")

    async def cancel(self) -> None:
        # the worker keeps running; only the client stops following it
        logger.info("Remote run cancelled on the client")
