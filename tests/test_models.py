"""Tests for record and client-state models."""

from pathlib import Path

import pytest
from pydantic import TypeAdapter, ValidationError

from vidfx.errors import InputError
from vidfx.models import (
    LocalMetrics,
    ProcessingMetrics,
    ProcessingMode,
    RemoteMetrics,
    SelectedFile,
    TransformationRequest,
    TransformationStatus,
    UploadProgressState,
    metrics_kind,
    zero_metrics,
)


def _record(**kwargs) -> TransformationRequest:
    return TransformationRequest(source_path="u1/original/a.mp4", effect="sepia", user_id="u1", **kwargs)


class TestTransformationRequest:
    def test_defaults(self) -> None:
        record = _record()
        assert record.status == TransformationStatus.PENDING
        assert record.progress == 0
        assert record.time == "00:00:00"
        assert record.transformed_path is None
        assert not record.is_terminal

    def test_completed_requires_transformed_path(self) -> None:
        with pytest.raises(ValidationError):
            _record(status=TransformationStatus.COMPLETED)

    def test_progress_bounds(self) -> None:
        with pytest.raises(ValidationError):
            _record(progress=101)

    def test_advance_returns_new_snapshot(self) -> None:
        record = _record()
        updated = record.advance(status=TransformationStatus.PROCESSING, progress=10)
        assert record.status == TransformationStatus.PENDING
        assert updated.status == TransformationStatus.PROCESSING
        assert updated.progress == 10
        assert updated.id == record.id
        assert updated.updated_at >= record.updated_at

    def test_progress_may_not_decrease_while_processing(self) -> None:
        record = _record().advance(status="processing", progress=45)
        with pytest.raises(ValueError, match="decrease"):
            record.advance(progress=10)

    def test_completion_sets_path_and_status_together(self) -> None:
        record = _record().advance(status="processing", progress=90)
        done = record.advance(
            transformed_path="u1/processed/a.mp4",
            status=TransformationStatus.COMPLETED,
            progress=100,
        )
        assert done.is_terminal
        assert done.transformed_path == "u1/processed/a.mp4"

    def test_transformed_path_only_on_completion(self) -> None:
        record = _record().advance(status="processing")
        with pytest.raises(ValueError, match="only set on completion"):
            record.advance(transformed_path="u1/processed/a.mp4")

    def test_completion_without_path_rejected(self) -> None:
        record = _record().advance(status="processing")
        with pytest.raises(ValidationError):
            record.advance(status=TransformationStatus.COMPLETED)

    def test_terminal_states_are_final(self) -> None:
        failed = _record().advance(status="failed", error="boom")
        with pytest.raises(ValueError, match="already failed"):
            failed.advance(status="processing")

    def test_status_cannot_regress(self) -> None:
        record = _record().advance(status="processing")
        with pytest.raises(ValueError, match="Cannot move"):
            record.advance(status="pending")

    def test_immutable_fields(self) -> None:
        with pytest.raises(ValueError, match="Immutable"):
            _record().advance(effect="blur")

    def test_unknown_fields(self) -> None:
        with pytest.raises(ValueError, match="Unknown"):
            _record().advance(colour="red")

    def test_telemetry(self) -> None:
        record = _record(frames=120, fps=24.5, speed=800.0, time="00:00:05.00", size=512)
        assert record.telemetry() == {
            "fps": 24.5,
            "frames": 120,
            "size": 512,
            "speed": 800.0,
            "time": "00:00:05.00",
        }


class TestUploadProgressState:
    def test_percentage(self) -> None:
        state = UploadProgressState(bytes_uploaded=1, bytes_total=3)
        assert state.percentage == 33.33

    def test_zero_total(self) -> None:
        assert UploadProgressState().percentage == 0.0

    def test_complete(self) -> None:
        assert UploadProgressState(bytes_uploaded=10, bytes_total=10).percentage == 100.0

    def test_uploaded_cannot_exceed_total(self) -> None:
        with pytest.raises(ValidationError):
            UploadProgressState(bytes_uploaded=11, bytes_total=10)


class TestMetrics:
    def test_zero_metrics_match_mode(self) -> None:
        assert zero_metrics(ProcessingMode.CLIENT) == LocalMetrics()
        assert zero_metrics(ProcessingMode.REMOTE) == RemoteMetrics()
        assert metrics_kind(ProcessingMode.CLIENT) == "local"
        assert metrics_kind(ProcessingMode.REMOTE) == "remote"

    def test_discriminated_union(self) -> None:
        adapter = TypeAdapter(ProcessingMetrics)
        parsed = adapter.validate_python({"kind": "remote", "progress": 40, "fps": 30.0})
        assert isinstance(parsed, RemoteMetrics)
        assert parsed.fps == 30.0

    def test_remote_metrics_from_record(self) -> None:
        record = _record().advance(status="processing", progress=45, frames=300, fps=25.0, time="00:00:12.00")
        metrics = RemoteMetrics.from_record(record)
        assert metrics.progress == 45
        assert metrics.frames == 300
        assert metrics.time == "00:00:12.00"


class TestSelectedFile:
    def test_from_path(self, video_file: Path) -> None:
        selected = SelectedFile.from_path(video_file)
        assert selected.name == "clip.mp4"
        assert selected.content_type == "video/mp4"
        assert selected.size == video_file.stat().st_size

    def test_rejects_non_video(self, tmp_path: Path) -> None:
        path = tmp_path / "notes.txt"
        path.write_text("hello")
        with pytest.raises(InputError, match="video"):
            SelectedFile.from_path(path)

    def test_rejects_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(InputError, match="not found"):
            SelectedFile.from_path(tmp_path / "gone.mp4")
