"""Processing orchestrator: the ``upload -> processing -> complete`` machine.

The orchestrator only knows strategies through :class:`ExecutionStrategy`;
the mode picks which one runs. Every state change is published to the
registered listeners as an :class:`OrchestratorState` snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, Field

from vidfx.effects import EffectId, lookup
from vidfx.errors import AuthenticationError, InputError, TransitionError, VidFXError
from vidfx.models.processing import (
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
from vidfx.orchestrator.strategies import ExecutionStrategy
from vidfx.services.storage import download_filename

logger = logging.getLogger(__name__)

SIGN_IN_NOTICE = "Please sign in to use server-side processing"


class ErrorNotice(BaseModel):
    """A failure as shown to the user."""

    kind: str = Field(..., description="Machine-readable error kind")
    message: str


class OrchestratorState(BaseModel):
    """Immutable view of the orchestrator handed to listeners."""

    stage: Stage
    mode: ProcessingMode
    file: SelectedFile | None = None
    effect: str = EffectId.NONE.value
    metrics: ProcessingMetrics
    upload_progress: UploadProgressState | None = None
    result_url: str | None = None
    error: ErrorNotice | None = None
    notice: str | None = None


Listener = Callable[[OrchestratorState], None]


class ProcessingOrchestrator:
    """Drives one video at a time through selection, processing and result."""

    def __init__(
        self,
        strategies: dict[ProcessingMode, ExecutionStrategy],
        principal: Principal | None = None,
        mode: ProcessingMode = ProcessingMode.CLIENT,
    ) -> None:
        if mode not in strategies:
            raise ValueError(f"No strategy registered for mode {mode.value}")
        self._strategies = dict(strategies)
        self.principal = principal
        self._listeners: list[Listener] = []

        self._stage = Stage.UPLOAD
        self._mode = mode
        self._file: SelectedFile | None = None
        self._effect = EffectId.NONE.value
        self._metrics: LocalMetrics | RemoteMetrics = zero_metrics(mode)
        self._upload_progress: UploadProgressState | None = None
        self._result_url: str | None = None
        self._error: ErrorNotice | None = None
        self._notice: str | None = None

        self._task: asyncio.Task[str] | None = None
        self._run_id = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def stage(self) -> Stage:
        return self._stage

    @property
    def mode(self) -> ProcessingMode:
        return self._mode

    @property
    def metrics(self) -> LocalMetrics | RemoteMetrics:
        return self._metrics

    @property
    def result_url(self) -> str | None:
        return self._result_url

    @property
    def error(self) -> ErrorNotice | None:
        return self._error

    @property
    def notice(self) -> str | None:
        return self._notice

    @property
    def download_filename(self) -> str | None:
        """Name offered when saving the result."""
        if self._file is None:
            return None
        return download_filename(self._file.name)

    @property
    def state(self) -> OrchestratorState:
        return OrchestratorState(
            stage=self._stage,
            mode=self._mode,
            file=self._file,
            effect=self._effect,
            metrics=self._metrics,
            upload_progress=self._upload_progress,
            result_url=self._result_url,
            error=self._error,
            notice=self._notice,
        )

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self) -> None:
        snapshot = self.state
        for listener in list(self._listeners):
            listener(snapshot)

    def _require_stage(self, stage: Stage, action: str) -> None:
        if self._stage != stage:
            raise TransitionError(f"Cannot {action} while in {self._stage.value}")

    def _clear_run_state(self) -> None:
        self._metrics = zero_metrics(self._mode)
        self._upload_progress = None

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_file(self, path: Path | str) -> SelectedFile:
        """Choose the video to process.

        Raises:
            TransitionError: If not in the upload stage.
            InputError: If the file is missing or not a video.
        """
        self._require_stage(Stage.UPLOAD, "select a file")
        self._file = SelectedFile.from_path(path)
        self._error = None
        self._notice = None
        self._notify()
        return self._file

    def select_effect(self, effect_id: str | EffectId) -> None:
        """Choose the effect to apply.

        Raises:
            TransitionError: If not in the upload stage.
            UnknownEffectError: If the effect is not in the catalog.
        """
        self._require_stage(Stage.UPLOAD, "select an effect")
        key = effect_id.value if isinstance(effect_id, EffectId) else effect_id
        lookup(key)
        self._effect = key
        self._notify()

    def switch_mode(self, mode: ProcessingMode) -> bool:
        """Switch execution strategy, resetting everything selected so far.

        Switching to remote without a principal is refused: the state is
        left untouched, ``notice`` explains why and ``False`` is returned.

        Raises:
            TransitionError: If not in the upload stage.
        """
        self._require_stage(Stage.UPLOAD, "switch mode")
        if mode not in self._strategies:
            raise ValueError(f"No strategy registered for mode {mode.value}")
        if mode == self._mode:
            return True
        if mode == ProcessingMode.REMOTE and self.principal is None:
            logger.info("Refusing switch to remote mode: not signed in")
            self._notice = SIGN_IN_NOTICE
            self._notify()
            return False

        self._mode = mode
        self._file = None
        self._effect = EffectId.NONE.value
        self._result_url = None
        self._error = None
        self._notice = None
        self._clear_run_state()
        logger.info("Switched to %s mode", mode.value)
        self._notify()
        return True

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def apply_effect(self) -> Stage:
        """Run the selected effect with the active strategy.

        Returns the stage the run landed in: ``complete`` on success,
        ``upload`` after a failure (see :attr:`error`) or a cancellation.

        Raises:
            TransitionError: If not in the upload stage.
            InputError: If no file or no effect is selected.
            AuthenticationError: If remote mode has no principal.
        """
        self._require_stage(Stage.UPLOAD, "apply an effect")
        if self._file is None:
            raise InputError("Select a video first")
        if self._effect == EffectId.NONE.value:
            raise InputError("Select an effect first")
        if self._mode == ProcessingMode.REMOTE and self.principal is None:
            raise AuthenticationError(SIGN_IN_NOTICE)

        strategy = self._strategies[self._mode]
        file, effect, principal = self._file, self._effect, self.principal

        self._run_id += 1
        run_id = self._run_id
        self._stage = Stage.PROCESSING
        self._result_url = None
        self._error = None
        self._notice = None
        self._clear_run_state()
        logger.info("Applying %s to %s (%s mode)", effect, file.name, self._mode.value)
        self._notify()

        task = asyncio.create_task(
            strategy.start(
                file,
                effect,
                lambda metrics: self._on_metrics(run_id, metrics),
                lambda progress: self._on_upload_progress(run_id, progress),
                principal,
            )
        )
        self._task = task
        try:
            url = await task
        except asyncio.CancelledError:
            if run_id != self._run_id:
                return self._stage
            self._stage = Stage.UPLOAD
            self._clear_run_state()
            self._notify()
            raise
        except Exception as e:
            if run_id != self._run_id:
                return self._stage
            self._fail(e)
            return self._stage
        finally:
            if self._task is task:
                self._task = None

        if run_id != self._run_id:
            return self._stage
        self._stage = Stage.COMPLETE
        self._result_url = url
        self._metrics = self._metrics.model_copy(update={"progress": 100})
        logger.info("Run finished: %s", url)
        self._notify()
        return self._stage

    def _fail(self, error: Exception) -> None:
        if isinstance(error, VidFXError):
            logger.warning("Run failed (%s): %s", error.kind, error)
            notice = ErrorNotice(kind=error.kind, message=str(error))
        else:
            logger.exception("Run failed unexpectedly")
            notice = ErrorNotice(kind=VidFXError.kind, message=str(error) or type(error).__name__)
        self._stage = Stage.UPLOAD
        self._error = notice
        self._clear_run_state()
        self._notify()

    def _on_metrics(self, run_id: int, metrics: LocalMetrics | RemoteMetrics) -> None:
        if run_id != self._run_id or self._stage != Stage.PROCESSING:
            return
        if metrics.kind != metrics_kind(self._mode):
            logger.debug("Dropping %s metrics in %s mode", metrics.kind, self._mode.value)
            return
        progress = max(self._metrics.progress, min(100, max(0, metrics.progress)))
        self._metrics = metrics.model_copy(update={"progress": progress})
        self._notify()

    def _on_upload_progress(self, run_id: int, progress: UploadProgressState) -> None:
        if run_id != self._run_id or self._stage != Stage.PROCESSING:
            return
        self._upload_progress = progress
        self._notify()

    async def cancel(self) -> None:
        """Stop the running transformation and return to the upload stage.

        A no-op outside the processing stage.
        """
        if self._stage != Stage.PROCESSING:
            return
        self._run_id += 1
        strategy = self._strategies[self._mode]
        try:
            await strategy.cancel()
        finally:
            task = self._task
            if task is not None and not task.done():
                task.cancel()
            self._stage = Stage.UPLOAD
            self._clear_run_state()
            logger.info("Run cancelled")
            self._notify()

    def restart(self) -> None:
        """Go back to the upload stage with nothing selected.

        Raises:
            TransitionError: If a run is in progress.
        """
        if self._stage == Stage.PROCESSING:
            raise TransitionError("Cannot restart while processing; cancel first")
        self._stage = Stage.UPLOAD
        self._file = None
        self._effect = EffectId.NONE.value
        self._result_url = None
        self._error = None
        self._notice = None
        self._clear_run_state()
        self._notify()
