"""Services module for vidfx."""

from vidfx.services.interfaces import IObjectStorage, IRecordStore
from vidfx.services.local_engine import FFmpegRuntime, IEncoderRuntime, LocalExecutionEngine
from vidfx.services.remote import RemoteAPIError, RemoteExecutionCoordinator
from vidfx.services.storage import HTTPObjectStorage, LocalObjectStorage
from vidfx.services.upload import FingerprintStore, ResumableUploader

__all__ = [
    "IObjectStorage",
    "IRecordStore",
    "IEncoderRuntime",
    "FFmpegRuntime",
    "LocalExecutionEngine",
    "RemoteExecutionCoordinator",
    "RemoteAPIError",
    "LocalObjectStorage",
    "HTTPObjectStorage",
    "FingerprintStore",
    "ResumableUploader",
]
