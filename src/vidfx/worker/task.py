"""Background worker that runs one server-side transformation.

Triggered with ``{transformationId, videoPath, effect}`` when a record is
inserted. It is the only writer of the record after creation.
"""

from __future__ import annotations

import logging
import tempfile
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from vidfx.effects import lookup
from vidfx.errors import DownloadFailedError, EmptyOutputError, StorageError
from vidfx.models.transformation import TransformationRequest, TransformationStatus
from vidfx.services.encoder import WORKER_OUTPUT_ARGS, EncoderProgress, build_command, run_ffmpeg
from vidfx.services.interfaces import IObjectStorage, IRecordStore
from vidfx.services.storage import processed_path

logger = logging.getLogger(__name__)

EncoderRunner = Callable[..., Awaitable[None]]


class WorkerPayload(BaseModel):
    """Job trigger payload."""

    model_config = ConfigDict(populate_by_name=True)

    transformation_id: str = Field(..., alias="transformationId")
    video_path: str = Field(..., alias="videoPath")
    effect: str

    @classmethod
    def from_record(cls, record: TransformationRequest) -> WorkerPayload:
        return cls(
            transformation_id=record.id,
            video_path=record.source_path,
            effect=record.effect,
        )


class ProgressThrottle:
    """Lets an event through at most once per ``interval`` seconds.

    The first event always passes.
    """

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval = interval
        self._clock = clock
        self._last: float | None = None

    def ready(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self.interval:
            return False
        self._last = now
        return True


class TransformWorker:
    """Downloads the source, applies the effect, uploads the result."""

    def __init__(
        self,
        storage: IObjectStorage,
        records: IRecordStore,
        *,
        ffmpeg_binary: str = "ffmpeg",
        scratch_dir: Path | None = None,
        throttle_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        runner: EncoderRunner = run_ffmpeg,
    ) -> None:
        self.storage = storage
        self.records = records
        self.ffmpeg_binary = ffmpeg_binary
        self.scratch_dir = scratch_dir
        self.throttle_interval = throttle_interval
        self._clock = clock
        self._runner = runner

    async def run(self, payload: WorkerPayload) -> str:
        """Process one transformation and return the result path.

        On failure the record is marked ``failed`` before the error
        propagates.
        """
        request_id = payload.transformation_id
        logger.info("Transforming %s: %s (effect=%s)", request_id, payload.video_path, payload.effect)
        try:
            await self.records.update(request_id, status=TransformationStatus.PROCESSING)
            return await self._process(payload)
        except Exception as e:
            logger.error("Transformation %s failed: %s", request_id, e)
            await self._mark_failed(request_id, str(e) or type(e).__name__)
            raise

    async def _process(self, payload: WorkerPayload) -> str:
        request_id = payload.transformation_id
        lookup(payload.effect)

        try:
            source = await self.storage.download(payload.video_path)
        except StorageError as e:
            raise DownloadFailedError(f"Failed to download {payload.video_path}: {e}") from e

        if self.scratch_dir is not None:
            self.scratch_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="vidfx-worker-", dir=self.scratch_dir) as tmp:
            input_path = Path(tmp) / "input.mp4"
            output_path = Path(tmp) / "output.mp4"
            input_path.write_bytes(source)

            throttle = ProgressThrottle(self.throttle_interval, self._clock)
            last_progress = 0

            async def _on_progress(event: EncoderProgress) -> None:
                nonlocal last_progress
                if not throttle.ready():
                    return
                last_progress = max(last_progress, event.percent)
                try:
                    await self.records.update(
                        request_id,
                        status=TransformationStatus.PROCESSING,
                        progress=last_progress,
                        frames=event.frames,
                        fps=event.fps,
                        speed=event.kbps,
                        time=event.timemark,
                        size=event.size_kb,
                    )
                except Exception:
                    logger.exception("Failed to update progress for %s", request_id)

            logger.info("Encoding %s with effect %s", request_id, payload.effect)
            await self._runner(
                build_command(input_path, output_path, payload.effect, WORKER_OUTPUT_ARGS),
                ffmpeg_binary=self.ffmpeg_binary,
                on_progress=_on_progress,
            )

            if not output_path.is_file() or output_path.stat().st_size == 0:
                raise EmptyOutputError("Encoder produced no output")
            result = output_path.read_bytes()

        destination = processed_path(payload.video_path)
        await self.storage.upload(destination, result, content_type="video/mp4", upsert=True)
        await self.records.update(
            request_id,
            transformed_path=destination,
            status=TransformationStatus.COMPLETED,
            progress=100,
        )
        logger.info("Transformation %s complete: %s", request_id, destination)
        return destination

    async def _mark_failed(self, request_id: str, message: str) -> None:
        try:
            record = await self.records.get(request_id)
            if record.is_terminal:
                return
            await self.records.update(request_id, status=TransformationStatus.FAILED, error=message)
        except Exception:
            logger.exception("Failed to mark %s as failed", request_id)
