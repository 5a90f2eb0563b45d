"""In-process execution engine.

The engine owns an encoder runtime: a private scratch directory acting as
its file system (named slots) plus the encoder child process. Terminating
the runtime kills the process and discards the directory, so the engine
has to be initialized again afterwards.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from vidfx.effects import lookup
from vidfx.errors import (
    EmptyOutputError,
    EncodeFailedError,
    InitializationFailedError,
    RunCancelledError,
)
from vidfx.services.encoder import (
    LOCAL_OUTPUT_ARGS,
    EncoderProgress,
    build_command,
    run_ffmpeg,
)

logger = logging.getLogger(__name__)

# (percentage 0-100, media timestamp)
LocalProgressCallback = Callable[[int, str], None]


class EncoderTerminatedError(Exception):
    """The runtime was terminated while a command was running."""


class IEncoderRuntime(Protocol):
    """Interface for an embedded encoder with a private file system."""

    @property
    def loaded(self) -> bool:
        """Whether :meth:`load` completed and no terminate happened since."""
        ...

    async def load(self) -> None:
        ...

    async def write_file(self, name: str, data: bytes) -> None:
        ...

    async def read_file(self, name: str) -> bytes:
        ...

    async def delete_file(self, name: str) -> None:
        ...

    async def list_files(self) -> list[str]:
        ...

    async def exec(
        self,
        args: list[str],
        on_progress: Callable[[EncoderProgress], None] | None = None,
    ) -> None:
        ...

    def terminate(self) -> None:
        ...


class FFmpegRuntime:
    """Encoder runtime backed by the ffmpeg executable."""

    def __init__(self, ffmpeg_binary: str = "ffmpeg", scratch_root: Path | None = None) -> None:
        self.ffmpeg_binary = ffmpeg_binary
        self.scratch_root = scratch_root
        self._workdir: Path | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._terminated = False

    @property
    def loaded(self) -> bool:
        return self._workdir is not None and not self._terminated

    @property
    def workdir(self) -> Path:
        if not self.loaded or self._workdir is None:
            raise EncoderTerminatedError("Runtime is not loaded")
        return self._workdir

    async def load(self) -> None:
        binary = shutil.which(self.ffmpeg_binary)
        if binary is None:
            raise InitializationFailedError(f"{self.ffmpeg_binary!r} not found in PATH")

        proc = await asyncio.create_subprocess_exec(
            binary, "-hide_banner", "-version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise InitializationFailedError(
                f"{binary} -version failed: {stderr.decode('utf-8', errors='replace')}"
            )

        if self.scratch_root is not None:
            self.scratch_root.mkdir(parents=True, exist_ok=True)
        self.ffmpeg_binary = binary
        self._workdir = Path(tempfile.mkdtemp(prefix="vidfx-engine-", dir=self.scratch_root))
        self._terminated = False
        version = stdout.decode("utf-8", errors="replace").splitlines()[:1]
        logger.info("Encoder runtime loaded: %s", version[0] if version else binary)

    def _slot(self, name: str) -> Path:
        slot = self.workdir / name
        if slot.parent != self.workdir:
            raise ValueError(f"Invalid slot name: {name}")
        return slot

    async def write_file(self, name: str, data: bytes) -> None:
        await asyncio.to_thread(self._slot(name).write_bytes, data)

    async def read_file(self, name: str) -> bytes:
        slot = self._slot(name)
        if not slot.is_file():
            raise FileNotFoundError(name)
        return await asyncio.to_thread(slot.read_bytes)

    async def delete_file(self, name: str) -> None:
        self._slot(name).unlink(missing_ok=True)

    async def list_files(self) -> list[str]:
        if not self.loaded:
            return []
        return sorted(p.name for p in self.workdir.iterdir())

    async def exec(
        self,
        args: list[str],
        on_progress: Callable[[EncoderProgress], None] | None = None,
    ) -> None:
        def _track(proc: asyncio.subprocess.Process) -> None:
            self._process = proc

        try:
            await run_ffmpeg(
                args,
                ffmpeg_binary=self.ffmpeg_binary,
                cwd=self.workdir,
                on_progress=on_progress,
                on_process=_track,
            )
        except EncodeFailedError:
            if self._terminated:
                raise EncoderTerminatedError("Runtime terminated during exec") from None
            raise
        finally:
            self._process = None

    def terminate(self) -> None:
        self._terminated = True
        if self._process is not None and self._process.returncode is None:
            self._process.kill()
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None
        logger.info("Encoder runtime terminated")


class LocalExecutionEngine:
    """Runs transformations in-process through an encoder runtime.

    Initialization is single-flight: concurrent callers await the same
    pending load, and a call after a successful load is a no-op.
    """

    INPUT_SLOT = "input.mp4"
    OUTPUT_SLOT = "output.mp4"

    def __init__(self, runtime_factory: Callable[[], IEncoderRuntime] = FFmpegRuntime) -> None:
        self._runtime_factory = runtime_factory
        self._runtime: IEncoderRuntime | None = None
        self._init_future: asyncio.Future[IEncoderRuntime] | None = None

    @property
    def is_ready(self) -> bool:
        return self._runtime is not None and self._runtime.loaded

    @property
    def runtime(self) -> IEncoderRuntime | None:
        return self._runtime

    async def initialize(self) -> None:
        """Load the encoder runtime once.

        Raises:
            InitializationFailedError: If the runtime cannot be loaded.
        """
        if self.is_ready:
            return
        if self._init_future is None:
            self._init_future = asyncio.ensure_future(self._load())
        future = self._init_future
        try:
            self._runtime = await asyncio.shield(future)
        except InitializationFailedError:
            raise
        except Exception as e:
            raise InitializationFailedError(f"Failed to initialize encoder: {e}") from e
        finally:
            if self._init_future is future and future.done():
                self._init_future = None

    async def _load(self) -> IEncoderRuntime:
        runtime = self._runtime_factory()
        await runtime.load()
        return runtime

    async def run(
        self,
        input_bytes: bytes,
        effect_id: str,
        on_progress: LocalProgressCallback | None = None,
    ) -> bytes:
        """Apply an effect to ``input_bytes`` and return the encoded output.

        Raises:
            UnknownEffectError: If the effect is not registered.
            EncodeFailedError: If the encoder fails.
            EmptyOutputError: If no output bytes were produced.
            RunCancelledError: If :meth:`cancel` was called during the run.
        """
        lookup(effect_id)
        await self.initialize()
        runtime = self._runtime
        if runtime is None:
            raise InitializationFailedError("Encoder runtime is not loaded")

        def _progress(event: EncoderProgress) -> None:
            if on_progress:
                on_progress(event.percent, event.timemark)

        args = build_command(self.INPUT_SLOT, self.OUTPUT_SLOT, effect_id, LOCAL_OUTPUT_ARGS)
        try:
            await runtime.write_file(self.INPUT_SLOT, input_bytes)
            await runtime.exec(args, _progress)
            try:
                data = await runtime.read_file(self.OUTPUT_SLOT)
            except FileNotFoundError:
                raise EmptyOutputError("Encoder produced no output file") from None
            if not data:
                raise EmptyOutputError("Encoder produced zero bytes")
            logger.info("Local run finished: effect=%s, %d -> %d bytes", effect_id, len(input_bytes), len(data))
            return data
        except Exception as e:
            # runtime unloaded mid-run means cancel() was called
            if not runtime.loaded:
                raise RunCancelledError("Local run was cancelled") from e
            raise
        finally:
            if runtime.loaded:
                await runtime.delete_file(self.INPUT_SLOT)
                await runtime.delete_file(self.OUTPUT_SLOT)

    def cancel(self) -> None:
        """Terminate the runtime immediately; partial output is discarded."""
        if self._runtime is not None:
            self._runtime.terminate()
            self._runtime = None
        if self._init_future is not None:
            self._init_future.cancel()
            self._init_future = None
