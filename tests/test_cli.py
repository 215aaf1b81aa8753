from __future__ import annotations

import json
from pathlib import Path

import pytest

from taskflow.cli import main


def _base(tmp_path: Path) -> list[str]:
    return ["--data-file", str(tmp_path / "data.json"), "--log-level", "error"]


def _json(capsys: pytest.CaptureFixture[str]) -> dict:
    return json.loads(capsys.readouterr().out)


def test_task_create_list_show_complete(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(_base(tmp_path) + ["task", "create", "CLI Task", "--priority", "high", "--tag", "cli"]) == 0
    task_id = _json(capsys)["task"]["id"]

    assert main(_base(tmp_path) + ["task", "list", "--json"]) == 0
    listed = _json(capsys)["tasks"]
    assert [t["id"] for t in listed] == [task_id]
    assert listed[0]["projectName"] == "Inbox"

    assert main(_base(tmp_path) + ["task", "list"]) == 0
    assert "Tasks" in capsys.readouterr().out

    assert main(_base(tmp_path) + ["task", "show", task_id]) == 0
    shown = _json(capsys)
    assert shown["project"] == "Inbox"
    assert shown["tagNames"] == ["cli"]

    assert main(_base(tmp_path) + ["task", "complete", task_id]) == 0
    assert _json(capsys)["task"]["status"] == "done"


def test_update_and_delete(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    main(_base(tmp_path) + ["task", "create", "Before"])
    task_id = _json(capsys)["task"]["id"]

    assert main(_base(tmp_path) + ["task", "update", task_id, "--name", "After", "--status", "ready"]) == 0
    payload = _json(capsys)
    assert payload["task"]["name"] == "After"
    assert payload["changed"] == ["name", "status"]

    assert main(_base(tmp_path) + ["task", "delete", task_id]) == 0
    assert _json(capsys)["deleted"] == task_id


def test_dependencies(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    main(_base(tmp_path) + ["task", "create", "First"])
    first = _json(capsys)["task"]["id"]
    main(_base(tmp_path) + ["task", "create", "Second"])
    second = _json(capsys)["task"]["id"]

    assert main(_base(tmp_path) + ["dep", "add", second, first]) == 0
    assert _json(capsys)["outcome"] == "created"

    assert main(_base(tmp_path) + ["dep", "add", first, second]) == 1
    assert "circular" in capsys.readouterr().err

    assert main(_base(tmp_path) + ["dep", "order", "--json"]) == 0
    assert _json(capsys)["order"] == [first, second]

    assert main(_base(tmp_path) + ["dep", "graph"]) == 0
    assert _json(capsys)["summary"] == {"ready": 1, "blocked": 1, "blocking": 1}

    assert main(_base(tmp_path) + ["dep", "remove", second, first]) == 0
    assert _json(capsys)["outcome"] == "removed"


def test_projects(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(_base(tmp_path) + ["project", "create", "Work", "--color", "#123456"]) == 0
    work = _json(capsys)["project"]
    assert main(_base(tmp_path) + ["project", "create", "Backend", "--parent", work["id"]]) == 0
    assert _json(capsys)["project"]["level"] == 1

    assert main(_base(tmp_path) + ["project", "create", "work"]) == 1
    assert "already exists" in capsys.readouterr().err

    assert main(_base(tmp_path) + ["project", "delete", work["id"]]) == 0
    assert _json(capsys)["name"] == "Work"


def test_handled_errors_return_one(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(_base(tmp_path) + ["task", "show", "ghost"]) == 1
    assert "not found" in capsys.readouterr().err
    assert main(_base(tmp_path) + ["project", "delete", "inbox"]) == 1
