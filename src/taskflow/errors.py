"""Exception taxonomy for task store operations.

Dependency-graph violations are not exceptions: they come back as
:class:`taskflow.task_engine.graph.EdgeResult` outcomes.
"""

from __future__ import annotations

from typing import Optional


class TaskflowError(Exception):
    """Base class for every error raised by the task store."""


class InvalidInputError(TaskflowError, ValueError):
    """Required identifiers or fields are missing or malformed.

    Nothing is saved when this is raised; most checks run before the
    document is even loaded.
    """


class NotFoundError(TaskflowError, LookupError):
    """A task, subtask or project id does not resolve."""

    def __init__(self, kind: str, identifier: Optional[str]) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind.capitalize()} {identifier} not found")


class ConflictError(TaskflowError, ValueError):
    """The request contradicts the current document (duplicate name, inbox delete)."""


class PersistenceError(TaskflowError):
    """The document could not be written; the mutation did not durably commit."""

    def __init__(self, path: object, operation: str) -> None:
        self.path = path
        self.operation = operation
        super().__init__(
            f"Failed to save {path} after {operation}; the change was not persisted"
        )
