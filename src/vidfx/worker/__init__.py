"""Server-side transformation worker."""

from vidfx.worker.task import ProgressThrottle, TransformWorker, WorkerPayload

__all__ = ["ProgressThrottle", "TransformWorker", "WorkerPayload"]
