"""Whole-file JSON storage for project backlogs."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from pydantic import ValidationError

from .schema import Backlog, BacklogDocument, BacklogStatus, utc_timestamp

LOGGER = logging.getLogger(__name__)


class BacklogStoreError(RuntimeError):
    """Raised when the backlog document cannot be read or written."""


class BacklogNotFoundError(BacklogStoreError):
    """Raised when a backlog id does not exist."""


def default_title(description: str) -> str:
    """Derive a short title from the first words of ``description``."""
    words = description.split()
    title = " ".join(words[:4])
    if len(words) > 4:
        title = f"{title}..."
    return title or "Untitled backlog"


class BacklogStore:
    """Read-modify-write access to ``backlogs.json``.

    Writes go through a temporary file and :func:`os.replace` so a crash never
    leaves a truncated document behind. There is no locking: a single writer is
    assumed.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> BacklogDocument:
        if not self.path.exists():
            return BacklogDocument()
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
            raise BacklogStoreError(f"Unable to read backlog file {self.path}: {error}") from error
        if not isinstance(payload, dict):
            raise BacklogStoreError(f"Backlog file {self.path} must contain a JSON object.")
        try:
            document = BacklogDocument.model_validate(payload)
        except ValidationError as error:
            raise BacklogStoreError(f"Backlog file {self.path} is invalid: {error}") from error
        if document.next_id is None:
            document.next_id = max((item.id for item in document.backlogs), default=0) + 1
        return document

    def save(self, document: BacklogDocument) -> None:
        data = document.model_dump(mode="json")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle, temp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
        except OSError as error:
            raise BacklogStoreError(f"Unable to write backlog file {self.path}: {error}") from error
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as stream:
                json.dump(data, stream, indent=2, ensure_ascii=False)
                stream.write("\n")
                stream.flush()
                os.fsync(stream.fileno())
            os.replace(temp_name, self.path)
        except OSError as error:
            Path(temp_name).unlink(missing_ok=True)
            raise BacklogStoreError(f"Unable to write backlog file {self.path}: {error}") from error

    def list_backlogs(self) -> List[Backlog]:
        return list(self.load().backlogs)

    def get(self, backlog_id: int) -> Backlog:
        backlog = self.load().find(backlog_id)
        if backlog is None:
            raise BacklogNotFoundError(f"Backlog {backlog_id} not found.")
        return backlog

    def add_backlog(
        self,
        description: str,
        *,
        title: Optional[str] = None,
        priority: str = "medium",
        estimated_effort: str = "medium",
        dependencies: Iterable[int] = (),
    ) -> Backlog:
        """Append a pending backlog with a freshly allocated id."""
        document = self.load()
        backlog = Backlog(
            id=document.allocate_id(),
            title=(title or "").strip() or default_title(description),
            description=description.strip(),
            priority=priority,
            estimated_effort=estimated_effort,
            dependencies=list(dependencies),
            status=BacklogStatus.PENDING,
            created_at=utc_timestamp(),
        )
        document.backlogs.append(backlog)
        self.save(document)
        return backlog

    def extend(
        self,
        drafts: Sequence[Backlog],
        *,
        project_summary: Optional[str] = None,
        runtime_requirements: object = None,
        technical_considerations: object = None,
    ) -> List[Backlog]:
        """Store a batch of planned backlogs, renumbering them onto fresh ids.

        ``drafts`` carry the ids the planner used; dependencies pointing at those
        ids are rewritten to the newly allocated ones. Dependencies that do not
        resolve are kept verbatim and will show up as unmet.
        """
        document = self.load()
        new_ids = [document.allocate_id() for _ in drafts]
        remap: dict[int, int] = {}
        for draft, new_id in zip(drafts, new_ids):
            remap.setdefault(draft.id, new_id)

        created: List[Backlog] = []
        stamp = utc_timestamp()
        for draft, new_id in zip(drafts, new_ids):
            backlog = draft.model_copy(
                update={
                    "id": new_id,
                    "dependencies": [remap.get(dep, dep) for dep in draft.dependencies],
                    "status": BacklogStatus.PENDING,
                    "created_at": stamp,
                    "completed_at": None,
                }
            )
            document.backlogs.append(backlog)
            created.append(backlog)

        if project_summary:
            document.project_summary = project_summary
        if runtime_requirements:
            document.runtime_requirements = runtime_requirements
        if technical_considerations:
            document.technical_considerations = technical_considerations
        self.save(document)
        return created

    def update_status(
        self,
        backlog_id: int,
        status: BacklogStatus,
        *,
        completed_at: Optional[str] = None,
    ) -> Backlog:
        document = self.load()
        backlog = document.find(backlog_id)
        if backlog is None:
            raise BacklogNotFoundError(f"Backlog {backlog_id} not found.")
        backlog.status = status
        if status == BacklogStatus.COMPLETED:
            backlog.completed_at = completed_at or utc_timestamp()
        else:
            backlog.completed_at = None
        self.save(document)
        return backlog

    def reset(self, backlog_id: int) -> Backlog:
        """Return a backlog to ``pending`` and clear its completion timestamp."""
        return self.update_status(backlog_id, BacklogStatus.PENDING)

    def remove(self, backlog_id: int) -> Backlog:
        document = self.load()
        backlog = document.find(backlog_id)
        if backlog is None:
            raise BacklogNotFoundError(f"Backlog {backlog_id} not found.")
        document.backlogs = [item for item in document.backlogs if item.id != backlog_id]
        self.save(document)
        LOGGER.info("Removed backlog %s (%s)", backlog.id, backlog.title)
        return backlog


__all__ = [
    "BacklogNotFoundError",
    "BacklogStore",
    "BacklogStoreError",
    "default_title",
]
