"""Document model for the task store.

The whole store is one :class:`Document`: an ordered list of projects, each
owning its tasks, each task owning its subtasks.  Records are dataclasses with
snake_case attributes; the persisted form keeps the camelCase keys of existing
``taskflow-data.json`` files so documents written by other clients stay
readable.  Keys the model does not know about are carried in ``extras`` and
written back untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from ..constants import DEFAULT_COLOR, INBOX_ID
from ..utils import _now_iso, generate_id


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Workflow status.  No transition rules are enforced between values."""

    TODO = "todo"
    READY = "ready"
    IN_PROGRESS = "in-progress"
    WAITING = "waiting"
    DONE = "done"


class TaskPriority(str, Enum):
    """Priority level; urgent is most pressing, none is the default."""

    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"

    @property
    def sort_key(self) -> int:
        return {"urgent": 0, "high": 1, "medium": 2, "low": 3, "none": 4}[self.value]


class ExecutionType(str, Enum):
    """Who carries the task out."""

    AI = "ai"
    MANUAL = "manual"
    HYBRID = "hybrid"


def _enum(enum_cls: type[Enum], raw: Any, default: Enum) -> Any:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw))
    except (ValueError, KeyError):
        return default


def _id_list(raw: Any) -> list[str]:
    """Coerce *raw* into a duplicate-free list of string ids, keeping order."""
    if not isinstance(raw, (list, tuple)):
        return []
    out: list[str] = []
    for item in raw:
        if item is None:
            continue
        sid = str(item)
        if sid not in out:
            out.append(sid)
    return out


def _opt_str(raw: Any) -> Optional[str]:
    """Coerce a stored date/time value to text; hand-edited YAML yields ``date`` objects."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, (date, datetime)):
        return raw.isoformat()
    return str(raw)


def _extras(data: dict[str, Any], known: frozenset[str]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in known}


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class Tag:
    id: str = field(default_factory=generate_id)
    name: str = ""
    color: str = DEFAULT_COLOR

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tag":
        return cls(
            id=str(data.get("id") or generate_id()),
            name=str(data.get("name") or ""),
            color=str(data.get("color") or DEFAULT_COLOR),
        )


_SUBTASK_KEYS = frozenset({
    "id", "name", "status", "priority", "estimatedMinutes", "scheduledTime",
    "scheduledDate", "assignedTo", "createdAt", "completedAt",
})


@dataclass
class Subtask:
    """One step of a task's action plan.  Subtasks do not nest."""

    id: str = field(default_factory=generate_id)
    name: str = ""
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.NONE
    estimated_minutes: Optional[float] = None
    scheduled_time: Optional[str] = None
    scheduled_date: Optional[str] = None
    assigned_to: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "priority": self.priority.value,
            "estimatedMinutes": self.estimated_minutes,
            "scheduledTime": self.scheduled_time,
            "scheduledDate": self.scheduled_date,
            "assignedTo": self.assigned_to,
            "createdAt": self.created_at,
            "completedAt": self.completed_at,
        }
        data.update(self.extras)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subtask":
        return cls(
            id=str(data.get("id") or generate_id()),
            name=str(data.get("name") or ""),
            status=_enum(TaskStatus, data.get("status"), TaskStatus.TODO),
            priority=_enum(TaskPriority, data.get("priority"), TaskPriority.NONE),
            estimated_minutes=data.get("estimatedMinutes"),
            scheduled_time=_opt_str(data.get("scheduledTime")),
            scheduled_date=_opt_str(data.get("scheduledDate")),
            assigned_to=data.get("assignedTo"),
            created_at=str(data.get("createdAt") or _now_iso()),
            completed_at=data.get("completedAt"),
            extras=_extras(data, _SUBTASK_KEYS),
        )

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE

    def set_status(self, new_status: TaskStatus) -> None:
        self.status = new_status
        self.completed_at = _now_iso() if new_status == TaskStatus.DONE else None

    def complete(self) -> None:
        self.set_status(TaskStatus.DONE)


_TASK_KEYS = frozenset({
    "id", "name", "description", "context", "status", "priority", "dueDate",
    "scheduledDate", "scheduledTime", "estimatedMinutes", "executionType",
    "assignedTo", "tags", "subtasks", "blockedBy", "blocks", "createdAt",
    "updatedAt", "completedAt",
})


@dataclass
class Task:
    """A unit of work owned by exactly one project.

    ``blocked_by`` and ``blocks`` are the two halves of the dependency relation:
    if this task lists B in ``blocked_by`` then B lists this task in ``blocks``.
    Only :mod:`taskflow.task_engine.graph` should change them.
    """

    id: str = field(default_factory=generate_id)
    name: str = ""
    description: str = ""
    context: str = ""
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.NONE
    due_date: Optional[str] = None
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None
    estimated_minutes: Optional[float] = None
    execution_type: ExecutionType = ExecutionType.MANUAL
    assigned_to: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    blocked_by: list[str] = field(default_factory=list)
    blocks: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None
    extras: dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "context": self.context,
            "status": self.status.value,
            "priority": self.priority.value,
            "dueDate": self.due_date,
            "scheduledDate": self.scheduled_date,
            "scheduledTime": self.scheduled_time,
            "estimatedMinutes": self.estimated_minutes,
            "executionType": self.execution_type.value,
            "assignedTo": self.assigned_to,
            "tags": list(self.tags),
            "subtasks": [s.to_dict() for s in self.subtasks],
            "blockedBy": list(self.blocked_by),
            "blocks": list(self.blocks),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "completedAt": self.completed_at,
        }
        data.update(self.extras)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing enums gracefully."""
        created = str(data.get("createdAt") or _now_iso())
        return cls(
            id=str(data.get("id") or generate_id()),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            context=str(data.get("context") or ""),
            status=_enum(TaskStatus, data.get("status"), TaskStatus.TODO),
            priority=_enum(TaskPriority, data.get("priority"), TaskPriority.NONE),
            due_date=_opt_str(data.get("dueDate")),
            scheduled_date=_opt_str(data.get("scheduledDate")),
            scheduled_time=_opt_str(data.get("scheduledTime")),
            estimated_minutes=data.get("estimatedMinutes"),
            execution_type=_enum(ExecutionType, data.get("executionType"), ExecutionType.MANUAL),
            assigned_to=data.get("assignedTo"),
            tags=_id_list(data.get("tags")),
            subtasks=[
                Subtask.from_dict(s) for s in list(data.get("subtasks") or []) if isinstance(s, dict)
            ],
            blocked_by=_id_list(data.get("blockedBy")),
            blocks=_id_list(data.get("blocks")),
            created_at=created,
            updated_at=str(data.get("updatedAt") or created),
            completed_at=data.get("completedAt"),
            extras=_extras(data, _TASK_KEYS),
        )

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = _now_iso()

    def set_status(self, new_status: TaskStatus) -> None:
        """Move to *new_status*; ``completed_at`` follows the done state."""
        self.status = new_status
        self.completed_at = _now_iso() if new_status == TaskStatus.DONE else None
        self.touch()

    def complete(self) -> None:
        self.set_status(TaskStatus.DONE)

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE

    @property
    def priority_rank(self) -> int:
        return self.priority.sort_key

    def get_subtask(self, subtask_id: str) -> Optional[Subtask]:
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None


# Lookups may resolve either kind of work item.
WorkItem = Union[Task, Subtask]


_PROJECT_KEYS = frozenset({
    "id", "name", "description", "color", "tasks", "isInbox", "parentProjectId",
    "level", "createdAt",
})


@dataclass
class Project:
    id: str = field(default_factory=generate_id)
    name: str = ""
    description: str = ""
    color: str = DEFAULT_COLOR
    tasks: list[Task] = field(default_factory=list)
    is_inbox: bool = False
    parent_project_id: Optional[str] = None
    level: int = 0
    created_at: str = field(default_factory=_now_iso)
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "tasks": [t.to_dict() for t in self.tasks],
            "isInbox": self.is_inbox,
            "parentProjectId": self.parent_project_id,
            "level": self.level,
            "createdAt": self.created_at,
        }
        data.update(self.extras)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        pid = str(data.get("id") or generate_id())
        return cls(
            id=pid,
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            color=str(data.get("color") or DEFAULT_COLOR),
            tasks=[Task.from_dict(t) for t in list(data.get("tasks") or []) if isinstance(t, dict)],
            # Older documents mark the inbox only by its id.
            is_inbox=bool(data.get("isInbox")) or pid == INBOX_ID,
            parent_project_id=data.get("parentProjectId"),
            level=int(data.get("level") or 0),
            created_at=str(data.get("createdAt") or _now_iso()),
            extras=_extras(data, _PROJECT_KEYS),
        )


_DOCUMENT_KEYS = frozenset({"projects", "tags", "settings"})


@dataclass
class Document:
    """Root aggregate and the unit of persistence.

    ``extras`` holds the collections owned by other components (recap entries,
    saved recaps, categories, ...) so a load/save cycle never drops them.
    """

    projects: list[Project] = field(default_factory=list)
    tags: list[Tag] = field(default_factory=list)
    settings: dict[str, Any] = field(default_factory=dict)
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "projects": [p.to_dict() for p in self.projects],
            "tags": [t.to_dict() for t in self.tags],
            "settings": dict(self.settings),
        }
        data.update(self.extras)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Document":
        settings = data.get("settings")
        return cls(
            projects=[
                Project.from_dict(p) for p in list(data.get("projects") or []) if isinstance(p, dict)
            ],
            tags=[Tag.from_dict(t) for t in list(data.get("tags") or []) if isinstance(t, dict)],
            settings=dict(settings) if isinstance(settings, dict) else {},
            extras=_extras(data, _DOCUMENT_KEYS),
        )

    @classmethod
    def empty(cls) -> "Document":
        return cls(projects=[], tags=[], settings={})
