"""Pydantic models validating operation inputs.

Validation happens before the document is loaded, so a rejected request never
touches stored data.
"""

from __future__ import annotations

from typing import Any, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import InvalidInputError
from .model import ExecutionType, TaskPriority, TaskStatus

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
TIME_PATTERN = r"^\d{2}:\d{2}$"

M = TypeVar("M", bound=BaseModel)


class _Input(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class TaskCreate(_Input):
    """Fields accepted when creating a task."""

    name: str = Field(min_length=1)
    description: str = ""
    context: str = ""
    project: Optional[str] = None
    priority: TaskPriority = TaskPriority.NONE
    status: TaskStatus = TaskStatus.TODO
    due_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    scheduled_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    scheduled_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    estimated_minutes: Optional[float] = Field(default=None, gt=0)
    execution_type: ExecutionType = ExecutionType.MANUAL
    tags: list[str] = Field(default_factory=list)


class TaskUpdate(_Input):
    """Partial update.  Only fields explicitly passed are applied.

    Date, time and assignee fields accept ``None`` to clear them.
    """

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    context: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    scheduled_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    scheduled_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    estimated_minutes: Optional[float] = Field(default=None, gt=0)
    execution_type: Optional[ExecutionType] = None
    assigned_to: Optional[str] = None

    @field_validator("due_date", "scheduled_date", "scheduled_time", "assigned_to", mode="before")
    @classmethod
    def _blank_clears(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class BulkUpdate(_Input):
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    scheduled_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    execution_type: Optional[ExecutionType] = None


class SubtaskCreate(_Input):
    name: str = Field(min_length=1)
    estimated_minutes: Optional[float] = Field(default=None, gt=0)
    scheduled_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    scheduled_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)


class SubtaskSchedule(_Input):
    scheduled_time: str = Field(pattern=TIME_PATTERN)
    scheduled_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    estimated_minutes: Optional[float] = Field(default=None, gt=0)


class ProjectCreate(_Input):
    name: str = Field(min_length=1)
    description: str = ""
    color: Optional[str] = None


class BlockerInfo(_Input):
    type: str = Field(pattern=r"^(person|external|dependency|resource|decision)$")
    description: str = Field(min_length=1)
    expected_resolution: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    follow_up_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    contact_info: Optional[str] = None


class FollowUp(_Input):
    note: str = Field(min_length=1)
    new_follow_up_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "input"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def parse_input(model_cls: type[M], data: Union[dict[str, Any], M, None] = None, **kwargs: Any) -> M:
    """Validate *data* (or keyword fields) into *model_cls*.

    Raises :class:`InvalidInputError` with every field error in the message.
    """
    if isinstance(data, model_cls):
        return data
    payload: dict[str, Any] = dict(data or {})
    payload.update(kwargs)
    try:
        return model_cls.model_validate(payload)
    except ValidationError as exc:
        raise InvalidInputError(f"Invalid {model_cls.__name__}: {_format_errors(exc)}") from exc


def require(**values: Any) -> None:
    """Reject the call if any named identifier is missing or blank."""
    missing = [name for name, value in values.items() if value is None or (isinstance(value, str) and not value.strip())]
    if missing:
        raise InvalidInputError(f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required")
