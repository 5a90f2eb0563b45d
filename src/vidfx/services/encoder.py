"""FFmpeg command building, progress parsing and execution.

Shared by the local engine runtime and the remote worker so both run the
same filter arguments and report progress the same way.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from pathlib import Path

from vidfx.effects import filter_args
from vidfx.errors import EncodeFailedError

logger = logging.getLogger(__name__)

# Server-side output encoding
WORKER_OUTPUT_ARGS = [
    "-c:v", "libx264",
    "-preset", "medium",
    "-crf", "23",
    "-movflags", "+faststart",
    "-pix_fmt", "yuv420p",
    "-profile:v", "main",
    "-threads", "0",
    "-f", "mp4",
]

LOCAL_OUTPUT_ARGS = [
    "-threads", "0",
    "-preset", "ultrafast",
]

# Matches: Duration: 00:01:23.45
DURATION_PATTERN = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")

# Matches: 1234.5kbits/s
BITRATE_PATTERN = re.compile(r"([\d.]+)\s*kbits/s")


@dataclass
class EncoderProgress:
    """One progress report from the encoder."""

    frames: int = 0
    fps: float = 0.0
    kbps: float = 0.0
    size_kb: int = 0
    timemark: str = "00:00:00"
    fraction: float = 0.0  # 0-1, stays 0 while the input duration is unknown
    done: bool = False

    @property
    def percent(self) -> int:
        """Fraction as an integer percentage clamped to [0, 100]."""
        return min(100, max(0, round(self.fraction * 100)))


ProgressCallback = Callable[[EncoderProgress], Awaitable[None] | None]


def parse_timestamp(value: str) -> float:
    """Convert ``HH:MM:SS(.fraction)`` to seconds (0.0 if unparseable)."""
    value = value.strip().lstrip("-")
    parts = value.split(":")
    if len(parts) != 3:
        return 0.0
    try:
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = float(parts[2])
    except ValueError:
        return 0.0
    return hours * 3600 + minutes * 60 + seconds


def format_timemark(seconds: float) -> str:
    """Format seconds as ``HH:MM:SS.cc``."""
    centis = int(round(max(seconds, 0.0) * 100))
    hours, centis = divmod(centis, 360000)
    minutes, centis = divmod(centis, 6000)
    secs, centis = divmod(centis, 100)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{centis:02d}"


def _to_float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return 0.0


class ProgressParser:
    """Parse ffmpeg ``-progress pipe:1`` output into :class:`EncoderProgress`.

    ffmpeg writes blocks of ``key=value`` lines terminated by a
    ``progress=continue`` or ``progress=end`` line. The input duration is
    picked up from the ``Duration:`` banner on stderr.

    Usage:
        parser = ProgressParser()
        for line in stderr:
            parser.feed_stderr(line)
        for line in stdout:
            progress = parser.feed(line)
            if progress:
                report(progress)
    """

    def __init__(self, duration: float | None = None) -> None:
        self.duration = duration
        self._current = EncoderProgress()

    def feed_stderr(self, line: str) -> None:
        """Scan a stderr line for the input duration."""
        if self.duration:
            return
        match = DURATION_PATTERN.search(line)
        if match:
            hours, minutes, seconds = match.groups()
            self.duration = int(hours) * 3600 + int(minutes) * 60 + float(seconds)

    def feed(self, line: str) -> EncoderProgress | None:
        """Consume one stdout line; return a snapshot when a block ends."""
        key, sep, value = line.strip().partition("=")
        if not sep:
            return None
        value = value.strip()
        current = self._current

        if key == "frame":
            current.frames = int(_to_float(value))
        elif key == "fps":
            current.fps = _to_float(value)
        elif key == "bitrate":
            match = BITRATE_PATTERN.search(value)
            current.kbps = float(match.group(1)) if match else 0.0
        elif key == "total_size":
            current.size_kb = int(_to_float(value)) // 1024
        elif key == "out_time":
            seconds = parse_timestamp(value)
            current.timemark = format_timemark(seconds)
            if self.duration:
                current.fraction = min(1.0, seconds / self.duration)
        elif key == "progress":
            if value == "end":
                current.fraction = 1.0
                current.done = True
            return replace(current)
        return None


def build_command(
    input_name: str | Path,
    output_name: str | Path,
    effect_id: str,
    output_args: list[str],
) -> list[str]:
    """Build encoder arguments for applying an effect.

    Pass-through effects produce a bare re-encode.
    """
    return [
        "-i", str(input_name),
        *filter_args(effect_id),
        *output_args,
        str(output_name),
    ]


async def run_ffmpeg(
    args: list[str],
    *,
    ffmpeg_binary: str = "ffmpeg",
    cwd: Path | None = None,
    on_progress: ProgressCallback | None = None,
    on_process: Callable[[asyncio.subprocess.Process], None] | None = None,
) -> None:
    """Run ffmpeg with progress reporting.

    Args:
        args: Arguments after the global options (inputs, filters, output)
        ffmpeg_binary: Executable name or path
        cwd: Working directory for relative input/output names
        on_progress: Called (and awaited if it returns an awaitable) per block
        on_process: Receives the spawned process, e.g. to kill it later

    Raises:
        EncodeFailedError: If ffmpeg cannot start or exits non-zero.
    """
    cmd = [
        ffmpeg_binary,
        "-hide_banner",
        "-nostdin",
        "-y",
        "-progress", "pipe:1",
        "-nostats",
        *args,
    ]
    logger.debug("Running encoder: %s", " ".join(cmd))

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
        )
    except OSError as e:
        raise EncodeFailedError(f"Failed to start {ffmpeg_binary}: {e}") from e

    if on_process:
        on_process(proc)

    stdout, stderr = proc.stdout, proc.stderr
    if stdout is None or stderr is None:
        if proc.returncode is None:
            proc.kill()
        await proc.wait()
        raise EncodeFailedError(f"{ffmpeg_binary} started without output pipes")

    parser = ProgressParser()
    stderr_tail: deque[str] = deque(maxlen=20)

    async def _read_stderr() -> None:
        async for raw in stderr:
            line = raw.decode("utf-8", errors="replace").rstrip()
            parser.feed_stderr(line)
            stderr_tail.append(line)

    async def _read_progress() -> None:
        async for raw in stdout:
            snapshot = parser.feed(raw.decode("utf-8", errors="replace"))
            if snapshot and on_progress:
                result = on_progress(snapshot)
                if inspect.isawaitable(result):
                    await result

    try:
        await asyncio.gather(_read_stderr(), _read_progress())
        returncode = await proc.wait()
    except BaseException:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    if returncode != 0:
        tail = "\n".join(stderr_tail)
        raise EncodeFailedError(f"ffmpeg exited with code {returncode}:\n{tail[-1000:]}")
