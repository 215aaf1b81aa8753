"""Tests for the dependency graph (task_engine/graph.py)."""

from __future__ import annotations

import random

import pytest

from taskflow.task_engine.graph import (
    EdgeOutcome,
    add_edge,
    partition,
    remove_edge,
    sever_edges,
    suggest_order,
    would_cycle,
)
from taskflow.task_engine.lookup import list_all_tasks
from taskflow.task_engine.model import Document, Project, Subtask, Task, TaskPriority, TaskStatus


def make_document(*ids: str) -> Document:
    return Document(projects=[Project(id="p1", name="Work", tasks=[Task(id=i, name=i.upper()) for i in ids])])


def tasks_by_id(document: Document) -> dict[str, Task]:
    return {v.task.id: v.task for v in list_all_tasks(document)}


def assert_symmetric(document: Document) -> None:
    index = tasks_by_id(document)
    for task in index.values():
        for blocker_id in task.blocked_by:
            assert task.id in index[blocker_id].blocks
        for blocked_id in task.blocks:
            assert task.id in index[blocked_id].blocked_by


class TestAddEdge:
    def test_creates_both_halves(self) -> None:
        doc = make_document("a", "b")
        result = add_edge(doc, "a", "b")
        assert result.outcome == EdgeOutcome.CREATED
        assert result.ok and result.changed
        index = tasks_by_id(doc)
        assert index["a"].blocked_by == ["b"]
        assert index["b"].blocks == ["a"]

    def test_self_dependency(self) -> None:
        doc = make_document("a")
        result = add_edge(doc, "a", "a")
        assert result.outcome == EdgeOutcome.SELF_DEPENDENCY
        assert not result.ok
        assert tasks_by_id(doc)["a"].blocked_by == []
        assert tasks_by_id(doc)["a"].blocks == []

    def test_missing_tasks_on_empty_document(self) -> None:
        result = add_edge(Document.empty(), "t1", "t2")
        assert result.outcome == EdgeOutcome.NOT_FOUND
        assert result.missing_id == "t1"

    def test_missing_blocker(self) -> None:
        doc = make_document("a")
        result = add_edge(doc, "a", "ghost")
        assert result.outcome == EdgeOutcome.NOT_FOUND
        assert result.missing_id == "ghost"
        assert tasks_by_id(doc)["a"].blocked_by == []

    def test_subtasks_cannot_carry_edges(self) -> None:
        doc = make_document("a")
        doc.projects[0].tasks[0].subtasks.append(Subtask(id="s1", name="step"))
        assert add_edge(doc, "s1", "a").outcome == EdgeOutcome.NOT_FOUND

    def test_idempotent(self) -> None:
        doc = make_document("a", "b")
        add_edge(doc, "a", "b")
        before = doc.to_dict()
        result = add_edge(doc, "a", "b")
        assert result.outcome == EdgeOutcome.ALREADY_EXISTS
        assert result.ok and not result.changed
        assert doc.to_dict() == before

    def test_direct_cycle_rejected(self) -> None:
        doc = make_document("t1", "t2")
        add_edge(doc, "t1", "t2")
        result = add_edge(doc, "t2", "t1")
        assert result.outcome == EdgeOutcome.CYCLE_DETECTED
        index = tasks_by_id(doc)
        assert index["t1"].blocked_by == ["t2"]
        assert index["t2"].blocked_by == []

    def test_transitive_cycle_rejected(self) -> None:
        doc = make_document("a", "b", "c")
        add_edge(doc, "a", "b")
        add_edge(doc, "b", "c")
        before = doc.to_dict()
        assert add_edge(doc, "c", "a").outcome == EdgeOutcome.CYCLE_DETECTED
        assert doc.to_dict() == before

    def test_cross_project_edges(self) -> None:
        doc = make_document("a")
        doc.projects.append(Project(id="p2", name="Home", tasks=[Task(id="b", name="B")]))
        assert add_edge(doc, "a", "b").outcome == EdgeOutcome.CREATED
        assert_symmetric(doc)

    def test_would_cycle_handles_deep_chains(self) -> None:
        ids = [f"t{i}" for i in range(3000)]
        doc = make_document(*ids)
        index = tasks_by_id(doc)
        for blocked, blocker in zip(ids, ids[1:]):
            index[blocked].blocked_by.append(blocker)
            index[blocker].blocks.append(blocked)
        assert would_cycle(index, ids[-1], ids[0])
        assert not would_cycle(index, ids[0], ids[-1])


class TestRemoveEdge:
    def test_removes_both_halves(self) -> None:
        doc = make_document("a", "b")
        add_edge(doc, "a", "b")
        result = remove_edge(doc, "a", "b")
        assert result.outcome == EdgeOutcome.REMOVED and result.changed
        index = tasks_by_id(doc)
        assert index["a"].blocked_by == [] and index["b"].blocks == []

    def test_missing_blocked_task(self) -> None:
        assert remove_edge(make_document("b"), "a", "b").outcome == EdgeOutcome.NOT_FOUND

    def test_missing_edge_tolerated(self) -> None:
        result = remove_edge(make_document("a", "b"), "a", "b")
        assert result.outcome == EdgeOutcome.REMOVED
        assert not result.changed

    def test_missing_blocker_still_cleans_blocked_side(self) -> None:
        doc = make_document("a")
        doc.projects[0].tasks[0].blocked_by.append("gone")
        result = remove_edge(doc, "a", "gone")
        assert result.changed
        assert tasks_by_id(doc)["a"].blocked_by == []


class TestSymmetryUnderRandomEdits:
    def test_random_sequence_keeps_symmetry(self) -> None:
        rng = random.Random(7)
        ids = [f"t{i}" for i in range(8)]
        doc = make_document(*ids)
        for _ in range(300):
            blocked, blocker = rng.choice(ids), rng.choice(ids)
            if rng.random() < 0.6:
                add_edge(doc, blocked, blocker)
            else:
                remove_edge(doc, blocked, blocker)
            assert_symmetric(doc)


class TestSeverEdges:
    def test_deleted_task_leaves_no_dangling_refs(self) -> None:
        doc = make_document("a", "b", "c")
        add_edge(doc, "a", "b")
        add_edge(doc, "b", "c")
        doc.projects[0].tasks = [t for t in doc.projects[0].tasks if t.id != "b"]
        assert sever_edges(doc, ["b"]) == 2
        index = tasks_by_id(doc)
        assert index["a"].blocked_by == []
        assert index["c"].blocks == []

    def test_nothing_to_sever(self) -> None:
        assert sever_edges(make_document("a"), []) == 0


class TestPartition:
    def test_ready_blocked_blocking(self) -> None:
        doc = make_document("a", "b", "c")
        add_edge(doc, "a", "b")
        add_edge(doc, "b", "c")
        part = partition([v.task for v in list_all_tasks(doc)])
        assert [t.id for t in part.ready] == ["c"]
        assert [t.id for t in part.blocked] == ["a", "b"]
        assert [t.id for t in part.blocking] == ["b", "c"]
        assert part.summary() == {"ready": 1, "blocked": 2, "blocking": 2}

    def test_done_blocker_frees_task(self) -> None:
        doc = make_document("a", "b")
        add_edge(doc, "a", "b")
        tasks_by_id(doc)["b"].complete()
        part = partition([v.task for v in list_all_tasks(doc)])
        assert [t.id for t in part.ready] == ["a"]
        assert part.blocked == [] and part.blocking == []

    def test_universe_resolves_outside_blockers(self) -> None:
        doc = make_document("a", "b")
        add_edge(doc, "a", "b")
        everything = [v.task for v in list_all_tasks(doc)]
        scoped = [t for t in everything if t.id == "a"]
        assert [t.id for t in partition(scoped, universe=everything).blocked] == ["a"]
        assert [t.id for t in partition(scoped).ready] == ["a"]


class TestSuggestOrder:
    def test_chain_scenario(self) -> None:
        doc = make_document("t1", "t2", "t3")
        add_edge(doc, "t1", "t2")
        add_edge(doc, "t2", "t3")
        index = tasks_by_id(doc)
        order = suggest_order([index["t1"], index["t2"], index["t3"]])
        assert [t.id for t in order] == ["t3", "t2", "t1"]

    def test_priority_then_due_date(self) -> None:
        tasks = [
            Task(id="none", priority=TaskPriority.NONE, due_date="2026-01-01"),
            Task(id="high-undated", priority=TaskPriority.HIGH),
            Task(id="high-late", priority=TaskPriority.HIGH, due_date="2026-03-01"),
            Task(id="high-early", priority=TaskPriority.HIGH, due_date="2026-02-01"),
            Task(id="urgent", priority=TaskPriority.URGENT),
        ]
        assert [t.id for t in suggest_order(tasks)] == [
            "urgent", "high-early", "high-late", "high-undated", "none",
        ]

    def test_blocker_beats_priority(self) -> None:
        doc = Document(projects=[Project(id="p", tasks=[
            Task(id="urgent", priority=TaskPriority.URGENT),
            Task(id="low", priority=TaskPriority.LOW),
        ])])
        add_edge(doc, "urgent", "low")
        assert [t.id for t in suggest_order(doc.projects[0].tasks)] == ["low", "urgent"]

    def test_completed_excluded_by_default(self) -> None:
        tasks = [Task(id="a"), Task(id="b", status=TaskStatus.DONE)]
        assert [t.id for t in suggest_order(tasks)] == ["a"]
        assert {t.id for t in suggest_order(tasks, include_completed=True)} == {"a", "b"}

    def test_stored_cycle_still_lists_every_task_once(self) -> None:
        a, b, c = Task(id="a"), Task(id="b"), Task(id="c")
        a.blocked_by, b.blocks = ["b"], ["a"]
        b.blocked_by, a.blocks = ["a"], ["b"]
        order = suggest_order([a, b, c])
        assert sorted(t.id for t in order) == ["a", "b", "c"]
        assert order[0].id == "c"

    def test_empty(self) -> None:
        assert suggest_order([]) == []

    @pytest.mark.parametrize("seed", range(5))
    def test_topological_validity(self, seed: int) -> None:
        rng = random.Random(seed)
        ids = [f"t{i}" for i in range(12)]
        doc = make_document(*ids)
        priorities = list(TaskPriority)
        for task in doc.projects[0].tasks:
            task.priority = rng.choice(priorities)
            if rng.random() < 0.5:
                task.due_date = f"2026-0{rng.randint(1, 9)}-1{rng.randint(0, 9)}"
        for _ in range(30):
            add_edge(doc, rng.choice(ids), rng.choice(ids))
        tasks = list(doc.projects[0].tasks)
        rng.shuffle(tasks)
        order = suggest_order(tasks)
        position = {t.id: i for i, t in enumerate(order)}
        assert len(order) == len(ids)
        for task in tasks:
            for blocker_id in task.blocked_by:
                assert position[blocker_id] < position[task.id]
