"""File-backed persistence for the task document.

The whole :class:`Document` lives in a single JSON (or YAML) file.  Every save
rewrites the file atomically (write-tmp-then-rename); there are no partial
writes.  Serializing access is not this module's job: callers run inside the
engine's :class:`~taskflow.task_engine.serializer.MutationGate`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from ..io_utils import _load_data_with_error, _save_data
from .model import Document


# ---------------------------------------------------------------------------
# Load outcome
# ---------------------------------------------------------------------------

class LoadState(str, Enum):
    """How :meth:`DocumentStore.load_result` obtained its document."""

    FRESH = "fresh"  # no file yet
    LOADED = "loaded"
    CORRUPT = "corrupt"  # file exists but could not be decoded


@dataclass
class LoadResult:
    document: Document
    state: LoadState
    error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.state == LoadState.CORRUPT


def _decode(raw: dict[str, Any]) -> tuple[Document, Optional[str]]:
    for key, expected in (("projects", list), ("tags", list), ("settings", dict)):
        value = raw.get(key)
        if value is not None and not isinstance(value, expected):
            return Document.empty(), f"'{key}' must be {expected.__name__}, got {type(value).__name__}"
    try:
        return Document.from_dict(raw), None
    except (TypeError, ValueError, AttributeError) as exc:
        return Document.empty(), f"{exc.__class__.__name__}: {exc}"


# ---------------------------------------------------------------------------
# DocumentStore
# ---------------------------------------------------------------------------

class DocumentStore:
    """Load and save the single task document.

    Parameters
    ----------
    path:
        Location of the document file.  Its parent directory is created on
        first save.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    # -- blocking API -------------------------------------------------------

    def load_result(self) -> LoadResult:
        """Load the document and report whether it was fresh, loaded or corrupt."""
        if not self._path.exists():
            logger.debug("No document at {}; starting empty", self._path)
            return LoadResult(Document.empty(), LoadState.FRESH)

        raw, err = _load_data_with_error(self._path, {})
        if err is None:
            document, err = _decode(raw)
            if err is None:
                return LoadResult(document, LoadState.LOADED)
        logger.warning("Could not read {} ({}); using an empty document", self._path, err)
        return LoadResult(Document.empty(), LoadState.CORRUPT, err)

    def load(self) -> Document:
        """Return the stored document, or an empty one if absent or unreadable."""
        return self.load_result().document

    def save(self, document: Document) -> bool:
        """Rewrite the whole document.  Returns ``False`` instead of raising."""
        try:
            _save_data(self._path, document.to_dict())
        except (OSError, TypeError, ValueError):
            logger.exception("Failed to save document to {}", self._path)
            return False
        logger.debug("Saved document to {} ({} projects)", self._path, len(document.projects))
        return True

    # -- async API ----------------------------------------------------------

    async def aload(self) -> Document:
        return await asyncio.to_thread(self.load)

    async def aload_result(self) -> LoadResult:
        return await asyncio.to_thread(self.load_result)

    async def asave(self, document: Document) -> bool:
        return await asyncio.to_thread(self.save, document)
