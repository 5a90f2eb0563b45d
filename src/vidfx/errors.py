"""Custom exceptions for vidfx.

Every exception carries a stable ``kind`` so callers can tell failures
apart without parsing messages.
"""


class VidFXError(Exception):
    """Base exception for vidfx."""

    kind = "error"


class InputError(VidFXError):
    """Rejected user input (no file, unsupported file, no effect)."""

    kind = "input"


class UnknownEffectError(InputError):
    """Effect identifier is not registered in the catalog."""

    kind = "unknown_effect"

    def __init__(self, effect_id: str):
        super().__init__(f"Unknown effect: {effect_id!r}")
        self.effect_id = effect_id


class AuthenticationError(VidFXError):
    """No signed-in principal or credential available."""

    kind = "unauthenticated"


class TransitionError(VidFXError):
    """Operation not permitted in the current stage."""

    kind = "invalid_transition"


class UploadFailedError(VidFXError):
    """Resumable upload failed after exhausting retries."""

    kind = "upload_failed"

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class SubmissionFailedError(VidFXError):
    """Transformation record could not be created."""

    kind = "submission_failed"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StorageError(VidFXError):
    """Object storage operation failed."""

    kind = "storage"


class RecordNotFoundError(VidFXError):
    """Transformation record does not exist."""

    kind = "not_found"


class ExecutionError(VidFXError):
    """Transformation run failed."""

    kind = "execution"


class InitializationFailedError(ExecutionError):
    """Encoder runtime could not be loaded."""

    kind = "initialization_failed"


class EncodeFailedError(ExecutionError):
    """Encoder exited with an error."""

    kind = "encode_failed"


class EmptyOutputError(ExecutionError):
    """Encoder produced zero bytes."""

    kind = "empty_output"


class DownloadFailedError(ExecutionError):
    """Worker could not fetch the source object."""

    kind = "download_failed"


class RunCancelledError(ExecutionError):
    """Run was terminated by the caller."""

    kind = "cancelled"
