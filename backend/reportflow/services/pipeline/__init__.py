"""
Pipeline orchestration package.

Components:
- orchestrator: PipelineOrchestrator driving the six stages
- progress_estimator: ticker strategies for simulated stage progress
- progress_manager: event publishing to listeners
- snapshot_store: durable snapshots (JSON files or in-memory)
- fallback_factory: placeholder results for degradable stages
- reporter: status log, notices and milestone notifications
- errors: error taxonomy

Example:
    from reportflow.services.pipeline import PipelineOrchestrator, JsonFileSnapshotStore

    orchestrator = PipelineOrchestrator("acme-q3", stages, JsonFileSnapshotStore(path))
    result = await orchestrator.process(document, "quarterly")
"""

from .errors import (
    InvalidStateError,
    PersistenceError,
    PipelineError,
    PipelineFailedError,
    PipelineInterruptedError,
    ValidationError,
)
from .fallback_factory import FallbackFactory
from .orchestrator import PipelineOrchestrator
from .progress_estimator import (
    FixedIncrementEstimator,
    ProgressEstimator,
    RandomIncrementEstimator,
)
from .progress_manager import PipelineListener, ProgressManager
from .reporter import LoggingNotifier, PipelineReporter, WebhookNotifier
from .snapshot_store import InMemorySnapshotStore, JsonFileSnapshotStore, SnapshotStore

__all__ = [
    # Orchestrator
    "PipelineOrchestrator",
    # Errors
    "PipelineError",
    "ValidationError",
    "InvalidStateError",
    "PersistenceError",
    "PipelineFailedError",
    "PipelineInterruptedError",
    # Progress
    "ProgressEstimator",
    "RandomIncrementEstimator",
    "FixedIncrementEstimator",
    "ProgressManager",
    "PipelineListener",
    # Persistence
    "SnapshotStore",
    "JsonFileSnapshotStore",
    "InMemorySnapshotStore",
    # Reporting
    "FallbackFactory",
    "PipelineReporter",
    "LoggingNotifier",
    "WebhookNotifier",
]
