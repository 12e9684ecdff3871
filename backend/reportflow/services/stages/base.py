"""
Stage abstraction for the document pipeline.

Each stage wraps one collaborator call and turns its tagged result into a
pydantic output model, or raises `StageError` with a message fit to show
the user. The orchestrator owns ordering, progress and persistence; stages
only do the work.

Example:
    class ExtractStage(BaseStage):
        id = "extract"
        depends_on = ["upload"]
        result_model = ExtractedText

        async def execute(self, context: StageContext) -> ExtractedText:
            loaded = context.get_result("upload")
            return self.unwrap(await self.extractor.extract_text(loaded))
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import BaseModel

from reportflow.models.pipeline import DocumentType
from reportflow.models.schemas import Failure, FailureKind

T = TypeVar("T", bound=BaseModel)


class StageError(Exception):
    """Error during stage execution.

    Attributes:
        stage_id: Id of the stage that failed
        message: Human-readable description, stored verbatim on the stage
        kind: Failure kind when the error came from a collaborator result
        cause: Original exception (if any)
    """

    def __init__(
        self,
        stage_id: str,
        message: str,
        cause: Exception | None = None,
        kind: FailureKind | None = None,
    ):
        self.stage_id = stage_id
        self.message = message
        self.cause = cause
        self.kind = kind
        super().__init__(f"[{stage_id}] {message}")


@dataclass
class StageContext:
    """Context passed between pipeline stages.

    Immutable by convention: stages never modify it, the orchestrator
    replaces it with `with_result` after each completed stage.

    Attributes:
        subject_id: Owning subject (project) id
        document_type: quarterly or board
        results: stage id -> output model
        metadata: Source document and processing options
            (document, voice_id, voice_settings, avatar_id)
    """

    subject_id: str
    document_type: DocumentType
    results: dict[str, BaseModel] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def get_result(self, stage_id: str) -> Any:
        """Get output of a completed stage.

        Raises:
            KeyError: If the stage has no result yet
        """
        if stage_id not in self.results:
            raise KeyError(
                f"Stage '{stage_id}' result not found. "
                f"Available: {list(self.results.keys())}"
            )
        return self.results[stage_id]

    def has_result(self, stage_id: str) -> bool:
        return stage_id in self.results

    def with_result(self, stage_id: str, result: BaseModel) -> "StageContext":
        return StageContext(
            subject_id=self.subject_id,
            document_type=self.document_type,
            results={**self.results, stage_id: result},
            metadata=self.metadata,
        )

    def get_metadata(self, key: str, default: Any = None) -> Any:
        value = self.metadata.get(key)
        return default if value is None else value


class BaseStage(ABC):
    """Abstract base class for pipeline stages.

    Subclasses must implement:
    - id: Stable stage identifier (also the key in performance.yaml/messages.yaml)
    - result_model: Pydantic model of the stage output
    - execute(): Async method that performs the work

    Optional overrides:
    - depends_on: Stage ids whose results this stage reads
    - cancellable: False if pause must wait for the call to finish
    - degradable: True if a failure is replaced by a fallback result
    - contribute(): Fields this stage adds to the final PipelineResult
    """

    id: str
    result_model: type[BaseModel]
    depends_on: list[str] = []
    cancellable: bool = True
    degradable: bool = False

    @abstractmethod
    async def execute(self, context: StageContext) -> BaseModel:
        """Execute the stage.

        Args:
            context: Context with results from previous stages

        Returns:
            Output model (instance of result_model)

        Raises:
            StageError: If execution fails
        """

    def validate_context(self, context: StageContext) -> None:
        """Check that all dependencies have results.

        Raises:
            StageError: If dependencies are missing
        """
        missing = [dep for dep in self.depends_on if not context.has_result(dep)]
        if missing:
            raise StageError(self.id, f"Missing dependencies: {missing}")

    def unwrap(self, result: T | Failure) -> T:
        """Return a collaborator's payload or raise its failure as StageError."""
        if isinstance(result, Failure):
            raise StageError(self.id, result.message, kind=result.kind)
        return result

    def restore_output(self, output: dict[str, Any]) -> BaseModel:
        """Rebuild the output model from a persisted snapshot."""
        return self.result_model.model_validate(output)

    def contribute(self, output: BaseModel) -> dict[str, Any]:
        """Fields for PipelineResult taken from this stage's output."""
        return {}
