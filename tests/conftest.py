"""Shared fixtures and fakes for vidfx tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from vidfx.services.encoder import EncoderProgress
from vidfx.services.local_engine import EncoderTerminatedError


class FakeRuntime:
    """In-memory encoder runtime.

    ``exec`` reports ``fractions`` as progress, optionally waits on
    ``gate``, then writes ``output`` to the output slot (the last arg).
    """

    def __init__(
        self,
        output: bytes | None = b"encoded-video",
        fractions: tuple[float, ...] = (0.25, 0.5, 1.0),
        fail: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.output = output
        self.fractions = fractions
        self.fail = fail
        self.gate = gate
        self.files: dict[str, bytes] = {}
        self.exec_calls: list[list[str]] = []
        self.load_calls = 0
        self.terminate_calls = 0
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def _check(self) -> None:
        if not self._loaded:
            raise EncoderTerminatedError("runtime terminated")

    async def load(self) -> None:
        self.load_calls += 1
        await asyncio.sleep(0)
        self._loaded = True

    async def write_file(self, name: str, data: bytes) -> None:
        self._check()
        self.files[name] = data

    async def read_file(self, name: str) -> bytes:
        self._check()
        if name not in self.files:
            raise FileNotFoundError(name)
        return self.files[name]

    async def delete_file(self, name: str) -> None:
        self.files.pop(name, None)

    async def list_files(self) -> list[str]:
        return sorted(self.files)

    async def exec(self, args: list[str], on_progress: Callable | None = None) -> None:
        self._check()
        self.exec_calls.append(args)
        for fraction in self.fractions:
            if on_progress:
                on_progress(EncoderProgress(fraction=fraction, timemark=f"00:00:0{int(fraction * 4)}.00"))
        if self.gate is not None:
            await self.gate.wait()
        self._check()
        if self.fail is not None:
            raise self.fail
        if self.output is not None:
            self.files[args[-1]] = self.output

    def terminate(self) -> None:
        self.terminate_calls += 1
        self._loaded = False
        self.files.clear()
        if self.gate is not None:
            self.gate.set()


@pytest.fixture
def video_file(tmp_path: Path) -> Path:
    """A small file with a video extension."""
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + bytes(range(256)) * 8)
    return path


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def make_runtime() -> type[FakeRuntime]:
    return FakeRuntime
