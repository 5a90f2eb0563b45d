"""Data models for vidfx."""

from vidfx.models.processing import (
    AccessToken,
    LocalMetrics,
    Principal,
    ProcessingMetrics,
    ProcessingMode,
    RemoteMetrics,
    SelectedFile,
    Stage,
    UploadProgressState,
    metrics_kind,
    zero_metrics,
)
from vidfx.models.transformation import TransformationRequest, TransformationStatus

__all__ = [
    # Record
    "TransformationRequest",
    "TransformationStatus",
    # Client state
    "Stage",
    "ProcessingMode",
    "Principal",
    "AccessToken",
    "SelectedFile",
    "UploadProgressState",
    # Metrics
    "LocalMetrics",
    "RemoteMetrics",
    "ProcessingMetrics",
    "metrics_kind",
    "zero_metrics",
]
