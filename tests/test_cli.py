"""Tests for the vidfx-cli entry point."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from vidfx import cli


class TestCLI:
    def test_effects_lists_catalog(self, monkeypatch, capsys) -> None:
        monkeypatch.setattr(sys, "argv", ["vidfx-cli", "effects"])
        cli.main()
        out = capsys.readouterr().out
        for effect_id in ("none", "sepia", "grayscale", "vignette", "blur"):
            assert effect_id in out

    def test_no_command_prints_help(self, monkeypatch) -> None:
        monkeypatch.setattr(sys, "argv", ["vidfx-cli"])
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
        assert exc_info.value.code == 1

    def test_progress_bar_is_clamped(self) -> None:
        assert cli._progress_bar(50, width=10) == "=====-----"
        assert cli._progress_bar(150, width=4) == "===="
        assert cli._progress_bar(-5, width=4) == "----"

    def test_remote_apply_without_credentials(self, monkeypatch, capsys, video_file: Path) -> None:
        monkeypatch.setattr(
            sys, "argv", ["vidfx-cli", "apply", str(video_file), "-e", "sepia", "--mode", "remote"]
        )
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
        assert exc_info.value.code == 1
        assert "sign in" in capsys.readouterr().err.lower()
