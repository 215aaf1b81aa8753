"""Task engine — gated operations over the task document.

This is the primary entry-point for all task manipulation.  Every public
operation is a coroutine that passes through the engine's
:class:`MutationGate`, loads the whole document, applies its change
synchronously, and writes the document back before the next operation is
admitted.
"""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence, TypeVar, Union

from loguru import logger

from ..config import StoreConfig
from ..errors import ConflictError, InvalidInputError, NotFoundError, PersistenceError
from ..utils import _now_iso, _today, generate_id
from . import graph
from .graph import EdgeResult, Partition
from .lookup import (
    TaskRef,
    TaskView,
    find_project,
    find_task,
    get_or_create_inbox,
    list_all_tasks,
    resolve_tag_ids,
)
from .model import Document, Project, Subtask, Task, TaskStatus, WorkItem
from .schemas import (
    BlockerInfo,
    BulkUpdate,
    FollowUp,
    ProjectCreate,
    SubtaskCreate,
    SubtaskSchedule,
    TaskCreate,
    TaskUpdate,
    parse_input,
    require,
)
from .serializer import MutationGate
from .store import DocumentStore

T = TypeVar("T")

# Fields a subtask can carry; anything else in an update targets tasks only.
_SUBTASK_FIELDS = {
    "name", "status", "priority", "estimated_minutes", "scheduled_time",
    "scheduled_date", "assigned_to",
}
# Fields where an explicit None clears the value.
_CLEARABLE_FIELDS = {"due_date", "scheduled_date", "scheduled_time", "assigned_to", "estimated_minutes"}


@dataclass
class UpdateResult:
    item: WorkItem
    changed: list[str] = field(default_factory=list)


@dataclass
class BulkUpdateResult:
    updated: list[WorkItem] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class TaskEngine:
    """Run task store operations one at a time against a single document.

    Parameters
    ----------
    data_file:
        Path of the document file.
    gate:
        Optional gate to share with other components of the same process.
    """

    def __init__(self, data_file: Path, gate: Optional[MutationGate] = None) -> None:
        self.store = DocumentStore(Path(data_file))
        self.gate = gate or MutationGate()

    @classmethod
    def from_config(cls, config: StoreConfig) -> "TaskEngine":
        return cls(config.data_file)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _backup_corrupt(self) -> Optional[Path]:
        """Copy an unreadable document aside before it gets overwritten."""
        src = self.store.path
        if not src.exists():
            return None
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        dest = src.with_name(f"{src.name}.corrupt-{stamp}")
        try:
            shutil.copy2(src, dest)
        except OSError:
            logger.exception("Could not back up unreadable document {}", src)
            return None
        logger.warning("Backed up unreadable document to {}", dest)
        return dest

    async def _mutate(
        self,
        operation: str,
        apply: Callable[[Document], T],
        *,
        commit_if: Optional[Callable[[T], bool]] = None,
    ) -> T:
        """Load, apply and save inside the gate.

        *apply* runs synchronously; if it raises, nothing is saved.  The save is
        skipped when *commit_if* returns False for the result.  A save that
        has started always finishes before the gate is released, even if the
        caller is cancelled.
        """
        async def body() -> T:
            loaded = await self.store.aload_result()
            document = loaded.document
            result = apply(document)
            if commit_if is not None and not commit_if(result):
                return result
            if loaded.degraded:
                self._backup_corrupt()
            saving = asyncio.ensure_future(self.store.asave(document))
            try:
                saved = await asyncio.shield(saving)
            except asyncio.CancelledError:
                # Hold the gate until the in-flight write lands.
                await asyncio.wait({saving})
                raise
            if not saved:
                raise PersistenceError(self.store.path, operation)
            return result

        body.__name__ = operation
        return await self.gate.run(body)

    async def _read(self, operation: str, view: Callable[[Document], T]) -> T:
        async def body() -> T:
            return view(await self.store.aload())

        body.__name__ = operation
        return await self.gate.run(body)

    @staticmethod
    def _require_ref(document: Document, task_id: str) -> TaskRef:
        ref = find_task(document, task_id)
        if ref is None:
            raise NotFoundError("task", task_id)
        return ref

    @staticmethod
    def _require_task(document: Document, task_id: str) -> tuple[Task, Project]:
        ref = TaskEngine._require_ref(document, task_id)
        if ref.is_subtask:
            raise InvalidInputError(f"{task_id} is a subtask; this operation needs a top-level task")
        return ref.item, ref.project  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Document access
    # ------------------------------------------------------------------

    async def load(self) -> Document:
        """Return a snapshot of the document (empty if absent or unreadable)."""
        return await self._read("load", lambda document: document)

    async def save(self, document: Document) -> bool:
        """Overwrite the stored document.  Returns the save flag, never raises."""
        return await self.gate.run(self.store.asave, document)

    async def list_all_tasks(self) -> list[TaskView]:
        return await self._read("list_all_tasks", list_all_tasks)

    async def find_task(self, task_id: str) -> Optional[TaskRef]:
        return await self._read("find_task", lambda document: find_task(document, task_id))

    async def get_task(self, task_id: str) -> TaskRef:
        require(task_id=task_id)
        return await self._read("get_task", lambda document: self._require_ref(document, task_id))

    async def list_tasks(
        self,
        *,
        status: Optional[str] = None,
        project: Optional[str] = None,
    ) -> list[TaskView]:
        """Tasks filtered by status (``"all"`` disables) and project-name substring."""
        def view(document: Document) -> list[TaskView]:
            tasks = list_all_tasks(document)
            if status and status != "all":
                tasks = [t for t in tasks if t.task.status.value == status]
            if project:
                needle = project.lower()
                tasks = [t for t in tasks if needle in t.project_name.lower()]
            return tasks

        return await self._read("list_tasks", view)

    # ------------------------------------------------------------------
    # Task CRUD
    # ------------------------------------------------------------------

    async def create_task(self, name: str, **fields: Any) -> Task:
        """Create a task in the named project (created if missing) or the inbox."""
        params = parse_input(TaskCreate, fields, name=name)

        def apply(document: Document) -> Task:
            if params.project:
                project = find_project(document, name=params.project)
                if project is None:
                    project = Project(name=params.project)
                    document.projects.append(project)
            else:
                project = get_or_create_inbox(document)

            scheduled_date = params.scheduled_date or params.due_date or (_today() if params.scheduled_time else None)
            task = Task(
                name=params.name,
                description=params.description,
                context=params.context,
                status=params.status,
                priority=params.priority,
                due_date=params.due_date or scheduled_date,
                scheduled_date=scheduled_date,
                scheduled_time=params.scheduled_time,
                estimated_minutes=params.estimated_minutes,
                execution_type=params.execution_type,
                tags=resolve_tag_ids(document, params.tags),
            )
            if task.status == TaskStatus.DONE:
                task.completed_at = _now_iso()
            project.tasks.append(task)
            return task

        task = await self._mutate("create_task", apply)
        logger.info("Created task {}: {}", task.id, task.name)
        return task

    async def create_subtasks(
        self,
        task_id: str,
        subtasks: Sequence[Union[str, Mapping[str, Any]]],
    ) -> list[Subtask]:
        """Append subtasks to a task.  Entries without a name are skipped."""
        require(task_id=task_id)
        if not isinstance(subtasks, (list, tuple)) or not subtasks:
            raise InvalidInputError("subtasks must be a non-empty list")
        specs: list[SubtaskCreate] = []
        for entry in subtasks:
            if isinstance(entry, str):
                if entry.strip():
                    specs.append(parse_input(SubtaskCreate, name=entry))
            elif isinstance(entry, Mapping) and entry.get("name"):
                specs.append(parse_input(SubtaskCreate, dict(entry)))

        def apply(document: Document) -> list[Subtask]:
            task, _ = self._require_task(document, task_id)
            created = [
                Subtask(
                    name=s.name,
                    estimated_minutes=s.estimated_minutes,
                    scheduled_time=s.scheduled_time,
                    scheduled_date=s.scheduled_date,
                )
                for s in specs
            ]
            task.subtasks.extend(created)
            task.touch()
            return created

        created = await self._mutate("create_subtasks", apply)
        logger.info("Added {} subtasks to {}", len(created), task_id)
        return created

    async def complete_task(self, task_id: str) -> WorkItem:
        require(task_id=task_id)

        def apply(document: Document) -> WorkItem:
            ref = self._require_ref(document, task_id)
            ref.item.complete()
            if ref.parent_task is not None:
                ref.parent_task.touch()
            return ref.item

        item = await self._mutate("complete_task", apply)
        logger.info("Completed {}: {}", item.id, item.name)
        return item

    async def update_task(self, task_id: str, **changes: Any) -> UpdateResult:
        """Apply a partial update to a task or subtask.

        Setting status ``done`` stamps ``completed_at``; any other status clears it.
        """
        require(task_id=task_id)
        params = parse_input(TaskUpdate, changes)
        fields = [name for name in TaskUpdate.model_fields if name in params.model_fields_set]

        def apply(document: Document) -> UpdateResult:
            ref = self._require_ref(document, task_id)
            item = ref.item
            if ref.is_subtask:
                unsupported = sorted(set(fields) - _SUBTASK_FIELDS)
                if unsupported:
                    raise InvalidInputError(f"Subtasks do not have: {', '.join(unsupported)}")
            changed: list[str] = []
            for name in fields:
                value = getattr(params, name)
                if value is None and name not in _CLEARABLE_FIELDS:
                    continue
                if name == "status":
                    item.set_status(value)
                else:
                    setattr(item, name, value)
                changed.append(name)
            if isinstance(item, Task):
                item.touch()
            elif ref.parent_task is not None:
                ref.parent_task.touch()
            return UpdateResult(item=item, changed=changed)

        result = await self._mutate("update_task", apply)
        logger.info("Updated {} ({})", task_id, ", ".join(result.changed) or "no fields")
        return result

    async def bulk_update_tasks(self, task_ids: Sequence[str], updates: Mapping[str, Any]) -> BulkUpdateResult:
        """Apply the same changes to many tasks; unknown ids are reported, not fatal."""
        if not isinstance(task_ids, (list, tuple)) or not task_ids:
            raise InvalidInputError("task_ids must be a non-empty list")
        params = parse_input(BulkUpdate, dict(updates or {}))
        fields = [name for name in BulkUpdate.model_fields if name in params.model_fields_set]

        def apply(document: Document) -> BulkUpdateResult:
            result = BulkUpdateResult()
            for tid in task_ids:
                ref = find_task(document, tid)
                if ref is None:
                    result.errors.append(f"Task {tid} not found")
                    continue
                item = ref.item
                for name in fields:
                    value = getattr(params, name)
                    if name in ("status", "priority", "execution_type") and value is None:
                        continue
                    if not hasattr(item, name):
                        continue
                    setattr(item, name, value)
                if item.status == TaskStatus.DONE and not item.completed_at:
                    item.completed_at = _now_iso()
                (item if isinstance(item, Task) else ref.parent_task).touch()
                result.updated.append(item)
            return result

        result = await self._mutate("bulk_update_tasks", apply)
        logger.info("Bulk updated {} tasks ({} errors)", len(result.updated), len(result.errors))
        return result

    async def delete_task(self, task_id: str) -> WorkItem:
        """Delete a task or subtask; edges pointing at a deleted task are severed."""
        require(task_id=task_id)

        def apply(document: Document) -> WorkItem:
            ref = self._require_ref(document, task_id)
            if ref.parent_task is not None:
                ref.parent_task.subtasks = [s for s in ref.parent_task.subtasks if s.id != task_id]
                ref.parent_task.touch()
            else:
                ref.project.tasks = [t for t in ref.project.tasks if t.id != task_id]
                graph.sever_edges(document, [task_id])
            return ref.item

        item = await self._mutate("delete_task", apply)
        logger.info("Deleted {}: {}", item.id, item.name)
        return item

    async def delete_all_completed(self, project_name: Optional[str] = None) -> int:
        """Remove done tasks and done subtasks, optionally within one project."""
        def apply(document: Document) -> int:
            removed_ids: list[str] = []
            count = 0
            for project in document.projects:
                if project_name and project.name.lower() != project_name.lower():
                    continue
                keep: list[Task] = []
                for task in project.tasks:
                    if task.is_done:
                        removed_ids.append(task.id)
                        continue
                    remaining = [s for s in task.subtasks if not s.is_done]
                    if len(remaining) != len(task.subtasks):
                        count += len(task.subtasks) - len(remaining)
                        task.subtasks = remaining
                        task.touch()
                    keep.append(task)
                project.tasks = keep
            graph.sever_edges(document, removed_ids)
            return count + len(removed_ids)

        count = await self._mutate("delete_all_completed", apply)
        logger.info("Deleted {} completed items", count)
        return count

    # ------------------------------------------------------------------
    # Assignment, scheduling, notes
    # ------------------------------------------------------------------

    async def assign_task(self, task_id: str, assign_to: str) -> WorkItem:
        """Assign a task or subtask; ``"none"`` unassigns."""
        require(task_id=task_id, assign_to=assign_to)
        assignee = None if assign_to == "none" else assign_to

        def apply(document: Document) -> WorkItem:
            ref = self._require_ref(document, task_id)
            ref.item.assigned_to = assignee
            (ref.parent_task or ref.item).touch()  # type: ignore[union-attr]
            return ref.item

        return await self._mutate("assign_task", apply)

    async def schedule_subtask(
        self,
        task_id: str,
        subtask_id: str,
        scheduled_time: str,
        scheduled_date: Optional[str] = None,
        estimated_minutes: Optional[float] = None,
    ) -> Subtask:
        require(task_id=task_id, subtask_id=subtask_id, scheduled_time=scheduled_time)
        params = parse_input(
            SubtaskSchedule,
            scheduled_time=scheduled_time,
            scheduled_date=scheduled_date,
            estimated_minutes=estimated_minutes,
        )

        def apply(document: Document) -> Subtask:
            task, _ = self._require_task(document, task_id)
            subtask = task.get_subtask(subtask_id)
            if subtask is None:
                raise NotFoundError("subtask", subtask_id)
            subtask.scheduled_time = params.scheduled_time
            subtask.scheduled_date = params.scheduled_date or _today()
            if params.estimated_minutes:
                subtask.estimated_minutes = params.estimated_minutes
            task.touch()
            return subtask

        return await self._mutate("schedule_subtask", apply)

    async def append_context(self, task_id: str, text: str) -> Task:
        """Append notes to a task's context under a timestamped separator."""
        require(task_id=task_id, text=text)

        def apply(document: Document) -> Task:
            task, _ = self._require_task(document, task_id)
            stamp = datetime.now().strftime("%Y-%m-%d %H:%M")
            task.context = f"{task.context}\n\n---\n[Added {stamp}]\n{text}" if task.context else text
            task.touch()
            return task

        return await self._mutate("append_context", apply)

    async def log_time(self, task_id: str, minutes: float, notes: str = "") -> float:
        """Record time spent on a task; returns the total logged minutes."""
        require(task_id=task_id, minutes=minutes)
        if not isinstance(minutes, (int, float)) or minutes <= 0:
            raise InvalidInputError("minutes must be a positive number")

        def apply(document: Document) -> float:
            task, _ = self._require_task(document, task_id)
            log = task.extras.setdefault("timeLog", [])
            log.append({"id": generate_id(), "minutes": minutes, "notes": notes or "", "loggedAt": _now_iso()})
            task.touch()
            return float(sum(entry.get("minutes", 0) or 0 for entry in log if isinstance(entry, dict)))

        return await self._mutate("log_time", apply)

    async def set_blocker(self, task_id: str, type: str, description: str, **details: Any) -> Task:
        """Mark a task as waiting on something outside the task graph."""
        require(task_id=task_id)
        info = parse_input(BlockerInfo, details, type=type, description=description)

        def apply(document: Document) -> Task:
            task, _ = self._require_task(document, task_id)
            task.status = TaskStatus.WAITING
            task.extras["blockerInfo"] = {
                "type": info.type,
                "description": info.description,
                "blockedSince": _now_iso(),
                "expectedResolution": info.expected_resolution,
                "followUpDate": info.follow_up_date,
                "contactInfo": info.contact_info,
                "notes": [],
            }
            task.touch()
            return task

        return await self._mutate("set_blocker", apply)

    async def clear_blocker(self, task_id: str, resolution: Optional[str] = None) -> Task:
        require(task_id=task_id)

        def apply(document: Document) -> Task:
            task, _ = self._require_task(document, task_id)
            task.status = TaskStatus.READY
            blocker = task.extras.get("blockerInfo")
            if isinstance(blocker, dict):
                blocker["resolvedAt"] = _now_iso()
                if resolution:
                    blocker.setdefault("notes", []).append(
                        {"date": _now_iso(), "note": f"RESOLVED: {resolution}"}
                    )
            task.touch()
            return task

        return await self._mutate("clear_blocker", apply)

    async def log_follow_up(self, task_id: str, note: str, new_follow_up_date: Optional[str] = None) -> Task:
        """Add a dated note to the task's blocker info, optionally moving the follow-up date."""
        require(task_id=task_id)
        params = parse_input(FollowUp, note=note, new_follow_up_date=new_follow_up_date)

        def apply(document: Document) -> Task:
            task, _ = self._require_task(document, task_id)
            blocker = task.extras.get("blockerInfo")
            if not isinstance(blocker, dict):
                blocker = task.extras["blockerInfo"] = {}
            blocker.setdefault("notes", []).append({"date": _now_iso(), "note": params.note})
            if params.new_follow_up_date:
                blocker["followUpDate"] = params.new_follow_up_date
            task.touch()
            return task

        return await self._mutate("log_follow_up", apply)

    async def set_task_goal(self, task_id: str, goal: str) -> Task:
        require(task_id=task_id, goal=goal)

        def apply(document: Document) -> Task:
            task, _ = self._require_task(document, task_id)
            task.extras["goal"] = goal
            task.touch()
            return task

        return await self._mutate("set_task_goal", apply)

    async def add_learning(self, task_id: str, learning: str) -> Task:
        """Record something learned while working on a task."""
        require(task_id=task_id, learning=learning)

        def apply(document: Document) -> Task:
            task, _ = self._require_task(document, task_id)
            learnings = task.extras.get("learnings")
            if not isinstance(learnings, list):
                learnings = task.extras["learnings"] = []
            learnings.append({"id": generate_id(), "text": learning, "addedAt": _now_iso()})
            task.touch()
            return task

        return await self._mutate("add_learning", apply)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def create_project(self, name: str, description: str = "", color: Optional[str] = None) -> Project:
        params = parse_input(ProjectCreate, name=name, description=description, color=color)

        def apply(document: Document) -> Project:
            if find_project(document, name=params.name) is not None:
                raise ConflictError(f'Project "{params.name}" already exists')
            project = Project(name=params.name, description=params.description)
            if params.color:
                project.color = params.color
            document.projects.append(project)
            return project

        project = await self._mutate("create_project", apply)
        logger.info("Created project {}: {}", project.id, project.name)
        return project

    async def create_subproject(
        self,
        parent_project_id: str,
        name: str,
        description: str = "",
        color: Optional[str] = None,
    ) -> Project:
        require(parent_project_id=parent_project_id)
        params = parse_input(ProjectCreate, name=name, description=description, color=color)

        def apply(document: Document) -> Project:
            parent = find_project(document, project_id=parent_project_id)
            if parent is None:
                raise NotFoundError("project", parent_project_id)
            project = Project(
                name=params.name,
                description=params.description,
                color=params.color or parent.color,
                parent_project_id=parent.id,
                level=parent.level + 1,
            )
            document.projects.append(project)
            return project

        return await self._mutate("create_subproject", apply)

    async def delete_project(
        self,
        project_id: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> Project:
        """Delete a project with its tasks.  The inbox cannot be deleted."""
        if not project_id and not project_name:
            raise InvalidInputError("project_id or project_name is required")

        def apply(document: Document) -> Project:
            if project_id:
                project = find_project(document, project_id=project_id)
            else:
                project = find_project(document, name=project_name)
            if project is None:
                raise NotFoundError("project", project_id or project_name)
            if project.is_inbox:
                raise ConflictError("Cannot delete the Inbox project")
            document.projects = [p for p in document.projects if p is not project]
            graph.sever_edges(document, [t.id for t in project.tasks])
            return project

        project = await self._mutate("delete_project", apply)
        logger.info("Deleted project {} and {} tasks", project.name, len(project.tasks))
        return project

    async def move_task_to_project(self, task_id: str, project_id: str) -> Task:
        require(task_id=task_id, project_id=project_id)

        def apply(document: Document) -> Task:
            task, source = self._require_task(document, task_id)
            target = find_project(document, project_id=project_id)
            if target is None:
                raise NotFoundError("project", project_id)
            source.tasks = [t for t in source.tasks if t.id != task_id]
            target.tasks.append(task)
            task.touch()
            return task

        return await self._mutate("move_task_to_project", apply)

    # ------------------------------------------------------------------
    # Dependency management
    # ------------------------------------------------------------------

    async def add_dependency(self, task_id: str, blocked_by_task_id: str) -> EdgeResult:
        """Make *task_id* wait on *blocked_by_task_id*.

        Self edges, cycles and unknown ids come back as outcomes on the result;
        the document is only saved when an edge was actually created.
        """
        require(task_id=task_id, blocked_by_task_id=blocked_by_task_id)
        result = await self._mutate(
            "add_dependency",
            lambda document: graph.add_edge(document, task_id, blocked_by_task_id),
            commit_if=lambda r: r.changed,
        )
        log = logger.info if result.ok else logger.warning
        log("add_dependency {} <- {}: {}", task_id, blocked_by_task_id, result.outcome.value)
        return result

    async def remove_dependency(self, task_id: str, blocked_by_task_id: str) -> EdgeResult:
        require(task_id=task_id, blocked_by_task_id=blocked_by_task_id)
        result = await self._mutate(
            "remove_dependency",
            lambda document: graph.remove_edge(document, task_id, blocked_by_task_id),
            commit_if=lambda r: r.changed,
        )
        logger.info("remove_dependency {} <- {}: {}", task_id, blocked_by_task_id, result.outcome.value)
        return result

    async def get_dependency_graph(self, project_id: Optional[str] = None) -> Partition:
        """Ready / blocked / blocking split of non-done tasks (optionally one project)."""
        def view(document: Document) -> Partition:
            everything = [v.task for v in list_all_tasks(document)]
            scoped = [
                v.task for v in list_all_tasks(document)
                if project_id is None or v.project_id == project_id
            ]
            return graph.partition(scoped, universe=everything)

        return await self._read("get_dependency_graph", view)

    async def suggest_task_order(
        self,
        project_id: Optional[str] = None,
        include_completed: bool = False,
    ) -> list[TaskView]:
        """Tasks in suggested execution order: blockers first, then priority and due date."""
        def view(document: Document) -> list[TaskView]:
            views = [
                v for v in list_all_tasks(document)
                if project_id is None or v.project_id == project_id
            ]
            by_id = {v.task.id: v for v in views}
            ordered = graph.suggest_order([v.task for v in views], include_completed=include_completed)
            return [by_id[t.id] for t in ordered]

        return await self._read("suggest_task_order", view)
