"""Dependency graph over tasks: edges, cycle rejection, partition and ordering.

An edge "A blocked by B" is stored twice: ``B`` in ``A.blocked_by`` and ``A``
in ``B.blocks``.  Functions here are the only writers of those lists and keep
both halves in step.  Structural problems (self edge, cycle, unknown id) are
returned as :class:`EdgeResult` outcomes, never raised.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Sequence

from loguru import logger

from .lookup import find_top_level_task, list_all_tasks
from .model import Document, Task


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class EdgeOutcome(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    REMOVED = "removed"
    SELF_DEPENDENCY = "self_dependency"
    NOT_FOUND = "not_found"
    CYCLE_DETECTED = "cycle_detected"


_OK_OUTCOMES = {EdgeOutcome.CREATED, EdgeOutcome.ALREADY_EXISTS, EdgeOutcome.REMOVED}


@dataclass
class EdgeResult:
    outcome: EdgeOutcome
    blocked_id: str
    blocker_id: str
    message: str = ""
    missing_id: Optional[str] = None
    changed: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome in _OK_OUTCOMES


@dataclass
class Partition:
    """Non-done tasks split by dependency state.

    A task is either ready or blocked, and may additionally be blocking.
    """

    ready: list[Task] = field(default_factory=list)
    blocked: list[Task] = field(default_factory=list)
    blocking: list[Task] = field(default_factory=list)

    def summary(self) -> dict[str, int]:
        return {"ready": len(self.ready), "blocked": len(self.blocked), "blocking": len(self.blocking)}


# ---------------------------------------------------------------------------
# Edge mutation
# ---------------------------------------------------------------------------

def _task_index(document: Document) -> dict[str, Task]:
    return {view.task.id: view.task for view in list_all_tasks(document)}


def _resolve(document: Document, task_id: str) -> Optional[Task]:
    """Resolve a top-level task; subtasks cannot carry dependency edges."""
    return find_top_level_task(document, task_id)


def would_cycle(index: dict[str, Task], blocked_id: str, blocker_id: str) -> bool:
    """Return True if making *blocked_id* wait on *blocker_id* closes a cycle.

    Walks ``blocked_by`` edges from the blocker with an explicit stack; reaching
    *blocked_id* means the blocker already (transitively) waits on it.
    """
    visited: set[str] = set()
    stack = [blocker_id]
    while stack:
        current = stack.pop()
        if current == blocked_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        node = index.get(current)
        if node is not None:
            stack.extend(node.blocked_by)
    return False


def add_edge(document: Document, blocked_id: str, blocker_id: str) -> EdgeResult:
    """Record that *blocked_id* cannot start until *blocker_id* is done."""
    if blocked_id == blocker_id:
        return EdgeResult(
            EdgeOutcome.SELF_DEPENDENCY, blocked_id, blocker_id,
            message=f"Task {blocked_id} cannot block itself",
        )

    blocked = _resolve(document, blocked_id)
    if blocked is None:
        return EdgeResult(
            EdgeOutcome.NOT_FOUND, blocked_id, blocker_id,
            message=f"Task {blocked_id} not found", missing_id=blocked_id,
        )
    blocker = _resolve(document, blocker_id)
    if blocker is None:
        return EdgeResult(
            EdgeOutcome.NOT_FOUND, blocked_id, blocker_id,
            message=f"Blocker task {blocker_id} not found", missing_id=blocker_id,
        )

    if would_cycle(_task_index(document), blocked_id, blocker_id):
        return EdgeResult(
            EdgeOutcome.CYCLE_DETECTED, blocked_id, blocker_id,
            message=f'"{blocked.name}" blocked by "{blocker.name}" would create a circular dependency',
        )

    if blocker_id in blocked.blocked_by:
        return EdgeResult(
            EdgeOutcome.ALREADY_EXISTS, blocked_id, blocker_id,
            message=f'Dependency already exists: "{blocker.name}" blocks "{blocked.name}"',
        )

    blocked.blocked_by.append(blocker_id)
    if blocked_id not in blocker.blocks:
        blocker.blocks.append(blocked_id)
    blocked.touch()
    blocker.touch()
    return EdgeResult(
        EdgeOutcome.CREATED, blocked_id, blocker_id,
        message=f'"{blocked.name}" is now blocked by "{blocker.name}"', changed=True,
    )


def remove_edge(document: Document, blocked_id: str, blocker_id: str) -> EdgeResult:
    """Drop the edge from both sides.

    Only the blocked task must exist; a missing blocker or a missing edge still
    cleans up whichever half is present.
    """
    blocked = _resolve(document, blocked_id)
    if blocked is None:
        return EdgeResult(
            EdgeOutcome.NOT_FOUND, blocked_id, blocker_id,
            message=f"Task {blocked_id} not found", missing_id=blocked_id,
        )

    changed = False
    if blocker_id in blocked.blocked_by:
        blocked.blocked_by.remove(blocker_id)
        blocked.touch()
        changed = True

    blocker = _resolve(document, blocker_id)
    if blocker is not None and blocked_id in blocker.blocks:
        blocker.blocks.remove(blocked_id)
        blocker.touch()
        changed = True

    blocker_label = blocker.name if blocker is not None else blocker_id
    return EdgeResult(
        EdgeOutcome.REMOVED, blocked_id, blocker_id,
        message=f'"{blocked.name}" is no longer blocked by "{blocker_label}"', changed=changed,
    )


def sever_edges(document: Document, task_ids: Iterable[str]) -> int:
    """Remove every reference to *task_ids* from all tasks' edge lists.

    Returns the number of tasks that were modified.
    """
    doomed = set(task_ids)
    if not doomed:
        return 0
    touched = 0
    for view in list_all_tasks(document):
        task = view.task
        before = (len(task.blocked_by), len(task.blocks))
        task.blocked_by = [tid for tid in task.blocked_by if tid not in doomed]
        task.blocks = [tid for tid in task.blocks if tid not in doomed]
        if (len(task.blocked_by), len(task.blocks)) != before:
            task.touch()
            touched += 1
    return touched


# ---------------------------------------------------------------------------
# Introspection
# ---------------------------------------------------------------------------

def partition(tasks: Sequence[Task], universe: Optional[Sequence[Task]] = None) -> Partition:
    """Classify the non-done *tasks* as ready, blocked and/or blocking.

    Edge endpoints are looked up in *universe* (defaults to *tasks*).  A blocker
    that cannot be found counts as finished.
    """
    by_id = {t.id: t for t in (universe if universe is not None else tasks)}
    result = Partition()
    for task in tasks:
        if task.is_done:
            continue
        unfinished = [
            bid for bid in task.blocked_by
            if bid in by_id and not by_id[bid].is_done
        ]
        if unfinished:
            result.blocked.append(task)
        else:
            result.ready.append(task)
        if any(tid in by_id and not by_id[tid].is_done for tid in task.blocks):
            result.blocking.append(task)
    return result


def _dfs_order(candidates: Sequence[Task], by_id: dict[str, Task]) -> list[str]:
    """Depth-first order visiting each task's blockers before the task.

    Roots are tasks with no blocker inside the set, then everything left over.
    """
    visited: set[str] = set()
    order: list[str] = []

    def visit(root: str) -> None:
        stack: list[tuple[str, bool]] = [(root, False)]
        while stack:
            tid, expanded = stack.pop()
            if expanded:
                order.append(tid)
                continue
            if tid in visited:
                continue
            visited.add(tid)
            stack.append((tid, True))
            for bid in reversed(by_id[tid].blocked_by):
                if bid in by_id and bid not in visited:
                    stack.append((bid, False))

    roots = [t for t in candidates if not any(bid in by_id for bid in t.blocked_by)]
    for task in roots:
        visit(task.id)
    for task in candidates:
        if task.id not in visited:
            visit(task.id)
    return order


def suggest_order(tasks: Sequence[Task], include_completed: bool = False) -> list[Task]:
    """Return *tasks* in a suggested execution order.

    Blockers inside the set always come before the tasks they block.  Among
    tasks that are free to go next, lower priority rank wins, then the earlier
    due date (undated last), then depth-first discovery order.  Every task
    appears exactly once, even if the stored edges contain a cycle.
    """
    candidates = [t for t in tasks if include_completed or not t.is_done]
    by_id: dict[str, Task] = {}
    for task in candidates:
        by_id.setdefault(task.id, task)
    candidates = list(by_id.values())
    if not candidates:
        return []

    position = {tid: idx for idx, tid in enumerate(_dfs_order(candidates, by_id))}

    def sort_key(task: Task) -> tuple[int, int, str, int]:
        return (
            task.priority_rank,
            0 if task.due_date else 1,
            task.due_date or "",
            position[task.id],
        )

    in_degree: dict[str, int] = {}
    dependents: dict[str, list[str]] = {tid: [] for tid in by_id}
    for task in candidates:
        blockers = {bid for bid in task.blocked_by if bid in by_id and bid != task.id}
        in_degree[task.id] = len(blockers)
        for bid in blockers:
            dependents[bid].append(task.id)

    heap = [(sort_key(by_id[tid]), tid) for tid, deg in in_degree.items() if deg == 0]
    heapq.heapify(heap)
    ordered: list[Task] = []
    while heap:
        _, tid = heapq.heappop(heap)
        ordered.append(by_id[tid])
        for dep_id in dependents[tid]:
            in_degree[dep_id] -= 1
            if in_degree[dep_id] == 0:
                heapq.heappush(heap, (sort_key(by_id[dep_id]), dep_id))

    if len(ordered) < len(candidates):
        placed = {t.id for t in ordered}
        remaining = sorted((tid for tid in by_id if tid not in placed), key=position.__getitem__)
        logger.warning("Dependency cycle detected among tasks: {}", remaining)
        ordered.extend(by_id[tid] for tid in remaining)
    return ordered
