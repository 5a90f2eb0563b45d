"""Tests for encoder command building, progress parsing and execution."""

from __future__ import annotations

import asyncio
import stat
from pathlib import Path

import pytest

from vidfx.errors import EncodeFailedError
from vidfx.services.encoder import (
    LOCAL_OUTPUT_ARGS,
    WORKER_OUTPUT_ARGS,
    EncoderProgress,
    ProgressParser,
    build_command,
    format_timemark,
    parse_timestamp,
    run_ffmpeg,
)

PROGRESS_BLOCK = [
    "frame=125",
    "fps=25.00",
    "bitrate= 512.3kbits/s",
    "total_size=204800",
    "out_time=00:00:05.000000",
    "speed=1.0x",
    "progress=continue",
]


def _fake_ffmpeg(tmp_path: Path, exit_code: int = 0) -> Path:
    """Write a shell script that mimics ffmpeg's progress output."""
    script = tmp_path / "fake-ffmpeg"
    progress = "\n".join(PROGRESS_BLOCK)
    script.write_text(
        "#!/bin/sh\n"
        "echo '  Duration: 00:00:10.00, start: 0.000000, bitrate: 1000 kb/s' >&2\n"
        "sleep 0.2\n"
        f"printf '%s\\n' '{progress}'\n"
        "printf 'frame=250\\nout_time=00:00:10.000000\\nprogress=end\\n'\n"
        "echo 'encoder says goodbye' >&2\n"
        f"exit {exit_code}\n"
    )
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return script


class TestTimestamps:
    def test_parse_timestamp(self) -> None:
        assert parse_timestamp("00:01:30.50") == 90.5
        assert parse_timestamp("01:00:00") == 3600.0

    def test_parse_garbage(self) -> None:
        assert parse_timestamp("N/A") == 0.0
        assert parse_timestamp("aa:bb:cc") == 0.0

    def test_format_timemark(self) -> None:
        assert format_timemark(5.0) == "00:00:05.00"
        assert format_timemark(3723.456) == "01:02:03.46"
        assert format_timemark(-1) == "00:00:00.00"


class TestProgressParser:
    def test_block_produces_snapshot(self) -> None:
        parser = ProgressParser()
        parser.feed_stderr("  Duration: 00:00:10.00, start: 0.000000, bitrate: 1000 kb/s")
        snapshots = [s for s in (parser.feed(line) for line in PROGRESS_BLOCK) if s]

        assert len(snapshots) == 1
        progress = snapshots[0]
        assert progress.frames == 125
        assert progress.fps == 25.0
        assert progress.kbps == 512.3
        assert progress.size_kb == 200
        assert progress.timemark == "00:00:05.00"
        assert progress.percent == 50
        assert not progress.done

    def test_unknown_duration_keeps_fraction_zero(self) -> None:
        parser = ProgressParser()
        for line in PROGRESS_BLOCK[:-1]:
            parser.feed(line)
        snapshot = parser.feed("progress=continue")
        assert snapshot is not None
        assert snapshot.percent == 0

    def test_end_marks_done(self) -> None:
        parser = ProgressParser(duration=10.0)
        snapshot = parser.feed("progress=end")
        assert snapshot is not None
        assert snapshot.done
        assert snapshot.percent == 100

    def test_snapshots_are_independent(self) -> None:
        parser = ProgressParser(duration=10.0)
        parser.feed("out_time=00:00:02.000000")
        first = parser.feed("progress=continue")
        parser.feed("out_time=00:00:04.000000")
        second = parser.feed("progress=continue")
        assert first is not None and second is not None
        assert first.percent == 20
        assert second.percent == 40

    def test_ignores_non_progress_lines(self) -> None:
        assert ProgressParser().feed("Press [q] to stop") is None

    def test_percent_is_clamped(self) -> None:
        assert EncoderProgress(fraction=1.7).percent == 100
        assert EncoderProgress(fraction=-0.2).percent == 0


class TestBuildCommand:
    def test_worker_command(self) -> None:
        args = build_command("in.mp4", "out.mp4", "sepia", WORKER_OUTPUT_ARGS)
        assert args[:2] == ["-i", "in.mp4"]
        assert args[2] == "-vf"
        assert args[3].startswith("colorchannelmixer=")
        assert args[-1] == "out.mp4"
        for flag, value in [("-c:v", "libx264"), ("-crf", "23"), ("-preset", "medium"), ("-movflags", "+faststart")]:
            assert args[args.index(flag) + 1] == value

    def test_local_command_for_passthrough(self) -> None:
        args = build_command("input.mp4", "output.mp4", "none", LOCAL_OUTPUT_ARGS)
        assert args == ["-i", "input.mp4", "-threads", "0", "-preset", "ultrafast", "output.mp4"]


class TestRunFFmpeg:
    @pytest.mark.asyncio
    async def test_reports_progress(self, tmp_path: Path) -> None:
        events: list[EncoderProgress] = []

        await run_ffmpeg(["-i", "in.mp4", "out.mp4"], ffmpeg_binary=str(_fake_ffmpeg(tmp_path)), on_progress=events.append)

        assert [e.percent for e in events] == [50, 100]
        assert events[-1].done
        assert events[-1].frames == 250

    @pytest.mark.asyncio
    async def test_async_progress_callback_is_awaited(self, tmp_path: Path) -> None:
        seen: list[int] = []

        async def _on_progress(event: EncoderProgress) -> None:
            seen.append(event.percent)

        await run_ffmpeg([], ffmpeg_binary=str(_fake_ffmpeg(tmp_path)), on_progress=_on_progress)
        assert seen == [50, 100]

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_with_stderr_tail(self, tmp_path: Path) -> None:
        with pytest.raises(EncodeFailedError, match="goodbye"):
            await run_ffmpeg([], ffmpeg_binary=str(_fake_ffmpeg(tmp_path, exit_code=1)))

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path: Path) -> None:
        with pytest.raises(EncodeFailedError, match="Failed to start"):
            await run_ffmpeg([], ffmpeg_binary=str(tmp_path / "no-such-ffmpeg"))

    @pytest.mark.asyncio
    async def test_process_without_pipes(self, monkeypatch) -> None:
        class _PipelessProcess:
            stdout = None
            stderr = None
            returncode = None

            def __init__(self) -> None:
                self.killed = False

            def kill(self) -> None:
                self.killed = True
                self.returncode = -9

            async def wait(self) -> int:
                return self.returncode

        process = _PipelessProcess()

        async def _spawn(*args, **kwargs) -> _PipelessProcess:
            return process

        monkeypatch.setattr(asyncio, "create_subprocess_exec", _spawn)

        with pytest.raises(EncodeFailedError, match="without output pipes"):
            await run_ffmpeg([], ffmpeg_binary="ffmpeg")
        assert process.killed
