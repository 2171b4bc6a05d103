"""Write agent-produced files into the project and snapshot it for prompts."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Sequence

from ..structured import FileArtifact

__all__ = [
    "DEFAULT_EXCLUDES",
    "MAX_FILE_BYTES",
    "MAX_SNAPSHOT_FILES",
    "WorkspaceWriteError",
    "snapshot_files",
    "write_files",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_EXCLUDES = frozenset(
    {".git", "node_modules", "plan-build-test", "__pycache__", ".venv", ".pytest_cache"}
)
# Snapshot limits keep prompts bounded on larger projects.
MAX_FILE_BYTES = 60_000
MAX_SNAPSHOT_FILES = 200


class WorkspaceWriteError(RuntimeError):
    """Raised when a generated file cannot be written to the project."""

    def __init__(self, path: str, error: OSError) -> None:
        super().__init__(f"Failed to write {path}: {error}")
        self.path = path


def write_files(root: Path, artifacts: Iterable[FileArtifact]) -> list[str]:
    """Write ``artifacts`` under ``root`` and return their relative paths in order.

    Parent directories are created as needed. Content is written byte-for-byte
    as produced by the agent.
    """
    written: list[str] = []
    for artifact in artifacts:
        relative = _relative_path(root, artifact.path)
        target = root / relative
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("w", encoding="utf-8", newline="") as handle:
                handle.write(artifact.content)
        except OSError as error:
            raise WorkspaceWriteError(relative, error) from error
        LOGGER.info("Wrote %s (%d bytes)", relative, len(artifact.content))
        written.append(relative)
    return written


def _relative_path(root: Path, declared: str) -> str:
    """Turn an agent-declared path into one relative to ``root``.

    Absolute paths inside the project are relativised; any other leading
    slash is dropped so the path still lands under ``root``.
    """
    cleaned = declared.strip().replace("\\", "/")
    candidate = Path(cleaned)
    if candidate.is_absolute():
        try:
            return candidate.relative_to(root).as_posix()
        except ValueError:
            pass
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned.lstrip("/")


def snapshot_files(
    root: Path,
    *,
    exclude: Sequence[str] = (),
    max_files: int = MAX_SNAPSHOT_FILES,
    max_bytes: int = MAX_FILE_BYTES,
) -> list[tuple[str, str]]:
    """Return ``(relative_path, content)`` for readable text files under ``root``."""
    if not root.is_dir():
        return []
    skipped_dirs = DEFAULT_EXCLUDES.union(exclude)
    collected: list[tuple[str, str]] = []
    for current, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(name for name in dirnames if name not in skipped_dirs)
        for filename in sorted(filenames):
            if filename.startswith("."):
                continue
            path = Path(current) / filename
            relative = path.relative_to(root).as_posix()
            if relative in skipped_dirs:
                continue
            try:
                if path.stat().st_size > max_bytes:
                    LOGGER.debug("Skipping large file %s", relative)
                    continue
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            collected.append((relative, content))
            if len(collected) >= max_files:
                LOGGER.warning("Snapshot truncated at %d files", max_files)
                return collected
    return collected
