"""Tests for document lookups (task_engine/lookup.py)."""

from __future__ import annotations

import pytest

from taskflow.task_engine.lookup import (
    find_project,
    find_task,
    find_top_level_task,
    get_or_create_inbox,
    list_all_tasks,
    resolve_tag_ids,
    tag_names,
)
from taskflow.task_engine.model import Document, Project, Subtask, Task


@pytest.fixture
def document() -> Document:
    return Document(
        projects=[
            Project(id="p1", name="Work", tasks=[
                Task(id="t1", name="One", subtasks=[Subtask(id="s1", name="Step")]),
                Task(id="t2", name="Two"),
            ]),
            Project(id="p2", name="Home", tasks=[Task(id="t3", name="Three")]),
        ]
    )


class TestListAllTasks:
    def test_project_then_task_order(self, document: Document) -> None:
        views = list_all_tasks(document)
        assert [v.id for v in views] == ["t1", "t2", "t3"]
        assert views[2].project_id == "p2"
        assert views[2].project_name == "Home"

    def test_restartable(self, document: Document) -> None:
        assert [v.id for v in list_all_tasks(document)] == [v.id for v in list_all_tasks(document)]

    def test_subtasks_not_flattened(self, document: Document) -> None:
        assert "s1" not in {v.id for v in list_all_tasks(document)}


class TestFindTask:
    def test_top_level(self, document: Document) -> None:
        ref = find_task(document, "t3")
        assert ref is not None
        assert ref.project.id == "p2"
        assert not ref.is_subtask

    def test_subtask_reports_parent(self, document: Document) -> None:
        ref = find_task(document, "s1")
        assert ref is not None
        assert ref.is_subtask
        assert ref.parent_task is not None and ref.parent_task.id == "t1"
        assert find_top_level_task(document, "s1") is None

    def test_top_level_wins_over_subtask(self, document: Document) -> None:
        document.projects[0].tasks[0].subtasks.append(Subtask(id="t3", name="Shadow"))
        ref = find_task(document, "t3")
        assert ref is not None
        assert not ref.is_subtask
        assert ref.item.name == "Three"

    def test_missing(self, document: Document) -> None:
        assert find_task(document, "nope") is None


class TestProjectsAndTags:
    def test_find_project_by_name_case_insensitive(self, document: Document) -> None:
        project = find_project(document, name="work")
        assert project is not None and project.id == "p1"
        assert find_project(document, project_id="p2") is not None
        assert find_project(document, name="Garden") is None

    def test_inbox_created_at_front(self, document: Document) -> None:
        inbox = get_or_create_inbox(document)
        assert document.projects[0] is inbox
        assert inbox.id == "inbox" and inbox.is_inbox
        assert get_or_create_inbox(document) is inbox
        assert len(document.projects) == 3

    def test_resolve_tags_creates_missing(self) -> None:
        doc = Document()
        ids = resolve_tag_ids(doc, ["Work", "work", "Home"])
        assert len(ids) == 2
        assert [t.name for t in doc.tags] == ["Work", "Home"]
        assert tag_names(doc, ids + ["stale"]) == ["Work", "Home"]
