"""
Durable pipeline snapshots keyed by subject id.

A snapshot is `Pipeline.model_dump(mode="json")`. It is written after
every transition, read once when an orchestrator is restored, and deleted
when the run completes.

Directory structure (JsonFileSnapshotStore):
    snapshot_dir/
    ├── acme-q3.json
    └── board%2F2024.json      # subject ids are percent-encoded

Example:
    store = JsonFileSnapshotStore(settings.snapshot_dir)
    store.save(pipeline)
    restored = store.load("acme-q3")
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import quote, unquote

from pydantic import ValidationError as PydanticValidationError

from reportflow.models.pipeline import Pipeline
from reportflow.services.pipeline.errors import PersistenceError

logger = logging.getLogger(__name__)


@runtime_checkable
class SnapshotStore(Protocol):
    """Persistence port for pipeline snapshots."""

    def save(self, pipeline: Pipeline) -> None:
        """Write (replace) the snapshot for `pipeline.subject_id`.

        Raises:
            PersistenceError: If the snapshot cannot be written
        """
        ...

    def load(self, subject_id: str) -> Pipeline | None:
        """Read a snapshot, or None if there is none.

        Raises:
            PersistenceError: If the snapshot exists but cannot be parsed
        """
        ...

    def delete(self, subject_id: str) -> None:
        ...

    def list_subjects(self) -> list[str]:
        ...


def _parse(raw: str, subject_id: str) -> Pipeline:
    try:
        return Pipeline.model_validate(json.loads(raw))
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise PersistenceError(
            f"Corrupt snapshot for {subject_id}: {e}", cause=e
        ) from e


class JsonFileSnapshotStore:
    """Snapshot store writing one JSON file per subject.

    Writes go to a temporary file in the same directory and are moved into
    place with os.replace, so a crash never leaves a half-written snapshot.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, subject_id: str) -> Path:
        return self.directory / f"{quote(subject_id, safe='')}.json"

    def save(self, pipeline: Pipeline) -> None:
        path = self._path(pipeline.subject_id)
        payload = json.dumps(
            pipeline.model_dump(mode="json"), ensure_ascii=False, indent=2
        )

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.directory, prefix=".", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(
                f"Cannot write snapshot {path}: {e}", cause=e
            ) from e

        logger.debug(f"Saved snapshot: {path.name} ({pipeline.status.value})")

    def load(self, subject_id: str) -> Pipeline | None:
        path = self._path(subject_id)
        if not path.exists():
            return None

        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Cannot read snapshot {path}: {e}", cause=e) from e

        return _parse(raw, subject_id)

    def delete(self, subject_id: str) -> None:
        path = self._path(subject_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot delete snapshot {path}: {e}", cause=e) from e
        logger.debug(f"Deleted snapshot: {path.name}")

    def list_subjects(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(unquote(p.stem) for p in self.directory.glob("*.json"))


class InMemorySnapshotStore:
    """Snapshot store for tests and single-process use.

    Keeps serialized JSON rather than live objects so that every load goes
    through the same parse path as the file store.
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, str] = {}

    def save(self, pipeline: Pipeline) -> None:
        self._snapshots[pipeline.subject_id] = pipeline.model_dump_json()

    def load(self, subject_id: str) -> Pipeline | None:
        raw = self._snapshots.get(subject_id)
        if raw is None:
            return None
        return _parse(raw, subject_id)

    def delete(self, subject_id: str) -> None:
        self._snapshots.pop(subject_id, None)

    def list_subjects(self) -> list[str]:
        return sorted(self._snapshots)

    def put_raw(self, subject_id: str, raw: str) -> None:
        """Store raw text as a snapshot (used to simulate corruption)."""
        self._snapshots[subject_id] = raw
