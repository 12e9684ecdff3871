"""
Pipeline error taxonomy.

All errors share `PipelineError` so the API layer can map them with one
handler; the subclass decides the HTTP status.
"""

from reportflow.models.pipeline import Pipeline, PipelineStatus


class PipelineError(Exception):
    """Base error for pipeline operations.

    Attributes:
        message: Human-readable description
        stage: Stage id the error relates to (if any)
        cause: Original exception (if any)
    """

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        cause: Exception | None = None,
    ):
        self.message = message
        self.stage = stage
        self.cause = cause
        super().__init__(f"[{stage}] {message}" if stage else message)


class ValidationError(PipelineError):
    """Invalid input to `start`. No pipeline is created."""


class InvalidStateError(PipelineError):
    """Operation not allowed in the pipeline's current status."""

    def __init__(self, operation: str, status: PipelineStatus | None):
        self.operation = operation
        self.status = status
        if status is None:
            super().__init__(f"Cannot {operation}: no pipeline")
        else:
            super().__init__(f"Cannot {operation}: pipeline is {status.value}")


class PersistenceError(PipelineError):
    """Snapshot could not be written, read or parsed."""


class PipelineFailedError(PipelineError):
    """Raised by `process` when the run ends in `failed`."""

    def __init__(self, pipeline: Pipeline):
        self.pipeline = pipeline
        stage = pipeline.current_stage
        super().__init__(stage.error_message or "Pipeline failed", stage=stage.id)


class PipelineInterruptedError(PipelineError):
    """Raised by `process` when the run was paused before completing."""

    def __init__(self, pipeline: Pipeline):
        self.pipeline = pipeline
        super().__init__("Pipeline paused", stage=pipeline.current_stage.id)
