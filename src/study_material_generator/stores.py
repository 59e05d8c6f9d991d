"""Job and document store collaborators.

The pipeline only depends on the two protocols.  The in-memory stores back
tests and dry runs; ``JsonFileDocumentStore`` is used by the CLI.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from .models import JobStatus, StructuredDocument

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    def update_progress(self, job_id: str, fraction: float, message: str) -> None: ...
    def set_status(self, job_id: str, status: JobStatus, error_message: str | None = None) -> None: ...


class DocumentStore(Protocol):
    def save_document(self, target_id: str, document: StructuredDocument) -> None: ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

class InMemoryJobStore:
    """Records every progress update and status transition, in order."""

    def __init__(self) -> None:
        self.progress: dict[str, list[tuple[float, str]]] = {}
        self.statuses: dict[str, list[tuple[JobStatus, str | None]]] = {}
        self._lock = threading.Lock()

    def update_progress(self, job_id: str, fraction: float, message: str) -> None:
        with self._lock:
            self.progress.setdefault(job_id, []).append((fraction, message))

    def set_status(self, job_id: str, status: JobStatus, error_message: str | None = None) -> None:
        with self._lock:
            self.statuses.setdefault(job_id, []).append((status, error_message))

    def last_status(self, job_id: str) -> JobStatus | None:
        history = self.statuses.get(job_id)
        return history[-1][0] if history else None


class InMemoryDocumentStore:
    """Upsert semantics: a save replaces any prior document for the target."""

    def __init__(self) -> None:
        self.documents: dict[str, StructuredDocument] = {}

    def save_document(self, target_id: str, document: StructuredDocument) -> None:
        self.documents[target_id] = document.model_copy(deep=True)


# ---------------------------------------------------------------------------
# JSON file implementation
# ---------------------------------------------------------------------------

class JsonFileDocumentStore:
    """Writes ``<output_dir>/<target_id>.json`` with atomic replace-on-success."""

    def __init__(self, output_dir: str | Path) -> None:
        self.output_dir = Path(output_dir)

    def path_for(self, target_id: str) -> Path:
        return self.output_dir / f"{target_id}.json"

    def save_document(self, target_id: str, document: StructuredDocument) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        final_path = self.path_for(target_id)
        fd, tmp_name = tempfile.mkstemp(dir=self.output_dir, prefix=f".{target_id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(document.model_dump_json(indent=2))
            os.replace(tmp_name, final_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("[store] saved document for %s → %s", target_id, final_path)

    def load_document(self, target_id: str) -> StructuredDocument | None:
        path = self.path_for(target_id)
        if not path.exists():
            return None
        return StructuredDocument.model_validate_json(path.read_text(encoding="utf-8"))
