"""Resolve tasks, projects and tags inside a loaded :class:`Document`."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from ..constants import DEFAULT_COLOR, INBOX_ID, INBOX_NAME
from ..utils import generate_id
from .model import Document, Project, Tag, Task, WorkItem


@dataclass
class TaskView:
    """A task annotated with the project that owns it."""

    task: Task
    project_id: str
    project_name: str

    @property
    def id(self) -> str:
        return self.task.id


@dataclass
class TaskRef:
    """Where a task or subtask lives.

    ``parent_task`` is set only when ``item`` is a subtask.
    """

    item: WorkItem
    project: Project
    parent_task: Optional[Task] = None

    @property
    def is_subtask(self) -> bool:
        return self.parent_task is not None


def list_all_tasks(document: Document) -> list[TaskView]:
    """Flatten every project's tasks, in project order then task order."""
    return [
        TaskView(task=task, project_id=project.id, project_name=project.name)
        for project in document.projects
        for task in project.tasks
    ]


def find_task(document: Document, task_id: str) -> Optional[TaskRef]:
    """Find a task by id, falling back to subtasks.

    Top-level tasks are searched across all projects before any subtask.
    """
    for project in document.projects:
        for task in project.tasks:
            if task.id == task_id:
                return TaskRef(item=task, project=project)
    for project in document.projects:
        for task in project.tasks:
            subtask = task.get_subtask(task_id)
            if subtask is not None:
                return TaskRef(item=subtask, project=project, parent_task=task)
    return None


def find_top_level_task(document: Document, task_id: str) -> Optional[Task]:
    ref = find_task(document, task_id)
    if ref is None or ref.is_subtask:
        return None
    return ref.item  # type: ignore[return-value]


def find_project(
    document: Document,
    *,
    project_id: Optional[str] = None,
    name: Optional[str] = None,
) -> Optional[Project]:
    """Find a project by id, or by case-insensitive name."""
    for project in document.projects:
        if project_id is not None and project.id == project_id:
            return project
        if name is not None and project.name.lower() == name.lower():
            return project
    return None


def get_or_create_inbox(document: Document) -> Project:
    """Return the inbox project, inserting one at the front if missing."""
    for project in document.projects:
        if project.is_inbox or project.id == INBOX_ID:
            return project
    inbox = Project(id=INBOX_ID, name=INBOX_NAME, color=DEFAULT_COLOR, is_inbox=True)
    document.projects.insert(0, inbox)
    return inbox


def resolve_tag_ids(document: Document, names: Iterable[str]) -> list[str]:
    """Map tag names to ids, creating tags that do not exist yet."""
    ids: list[str] = []
    for name in names:
        if not name:
            continue
        tag = next((t for t in document.tags if t.name.lower() == name.lower()), None)
        if tag is None:
            tag = Tag(id=generate_id(), name=name, color=DEFAULT_COLOR)
            document.tags.append(tag)
        if tag.id not in ids:
            ids.append(tag.id)
    return ids


def tag_names(document: Document, tag_ids: Iterable[str]) -> list[str]:
    """Names for *tag_ids*; ids with no matching tag are skipped."""
    by_id = {t.id: t.name for t in document.tags}
    return [by_id[tid] for tid in tag_ids if tid in by_id]
