"""Processing orchestrator and execution strategies."""

from vidfx.orchestrator.machine import (
    ErrorNotice,
    OrchestratorState,
    ProcessingOrchestrator,
)
from vidfx.orchestrator.strategies import ExecutionStrategy, LocalStrategy, RemoteStrategy

__all__ = [
    "ErrorNotice",
    "ExecutionStrategy",
    "LocalStrategy",
    "OrchestratorState",
    "ProcessingOrchestrator",
    "RemoteStrategy",
]
