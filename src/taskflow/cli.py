from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Awaitable, Callable, Optional

from rich.console import Console
from rich.table import Table

from .config import load_config
from .errors import TaskflowError
from .logging_setup import configure_logging
from .task_engine.engine import TaskEngine
from .task_engine.lookup import TaskRef, TaskView, tag_names
from .task_engine.model import ExecutionType, TaskPriority, TaskStatus

_STATUS_STYLE = {
    "done": "[green]done[/green]",
    "in-progress": "[yellow]in-progress[/yellow]",
    "waiting": "[red]waiting[/red]",
    "ready": "[cyan]ready[/cyan]",
}


def _engine(args: argparse.Namespace) -> TaskEngine:
    config = load_config(data_file=args.data_file, log_level=args.log_level)
    configure_logging(config.log_level)
    return TaskEngine.from_config(config)


def _emit(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2) + "\n")


def _run(args: argparse.Namespace, op: Callable[[TaskEngine], Awaitable[Any]]) -> Any:
    return asyncio.run(op(_engine(args)))


def _task_table(title: str, views: list[TaskView], console: Optional[Console] = None) -> None:
    table = Table(title=title, show_header=True)
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Project")
    table.add_column("Status", style="bold")
    table.add_column("Priority")
    table.add_column("Due")
    for idx, view in enumerate(views, start=1):
        task = view.task
        table.add_row(
            str(idx),
            task.id,
            task.name,
            view.project_name,
            _STATUS_STYLE.get(task.status.value, task.status.value),
            task.priority.value,
            task.due_date or "",
        )
    (console or Console()).print(table)


# ---------------------------------------------------------------------------
# task
# ---------------------------------------------------------------------------

def _task_create(args: argparse.Namespace) -> int:
    fields: dict[str, Any] = {
        "description": args.description,
        "priority": args.priority,
        "execution_type": args.execution_type,
        "tags": args.tag or [],
    }
    for name in ("project", "due_date", "scheduled_date", "scheduled_time", "estimated_minutes"):
        value = getattr(args, name)
        if value is not None:
            fields[name] = value
    task = _run(args, lambda engine: engine.create_task(args.name, **fields))
    _emit({"task": task.to_dict()})
    return 0


def _task_list(args: argparse.Namespace) -> int:
    views = _run(args, lambda engine: engine.list_tasks(status=args.status, project=args.project))
    if args.json:
        _emit({"tasks": [dict(v.task.to_dict(), projectName=v.project_name) for v in views]})
    else:
        _task_table("Tasks", views)
    return 0


async def _show(engine: TaskEngine, task_id: str) -> tuple[TaskRef, list[str]]:
    ref = await engine.get_task(task_id)
    document = await engine.load()
    return ref, tag_names(document, getattr(ref.item, "tags", []))


def _task_show(args: argparse.Namespace) -> int:
    ref, tags = _run(args, lambda engine: _show(engine, args.task_id))
    payload: dict[str, Any] = {"task": ref.item.to_dict(), "project": ref.project.name, "tagNames": tags}
    if ref.parent_task is not None:
        payload["parentTaskId"] = ref.parent_task.id
    _emit(payload)
    return 0


def _task_complete(args: argparse.Namespace) -> int:
    item = _run(args, lambda engine: engine.complete_task(args.task_id))
    _emit({"task": item.to_dict()})
    return 0


def _task_update(args: argparse.Namespace) -> int:
    changes = {
        name: getattr(args, name)
        for name in ("name", "description", "status", "priority", "due_date", "scheduled_date",
                     "scheduled_time", "estimated_minutes", "assigned_to")
        if getattr(args, name) is not None
    }
    result = _run(args, lambda engine: engine.update_task(args.task_id, **changes))
    _emit({"task": result.item.to_dict(), "changed": result.changed})
    return 0


def _task_delete(args: argparse.Namespace) -> int:
    item = _run(args, lambda engine: engine.delete_task(args.task_id))
    _emit({"deleted": item.id, "name": item.name})
    return 0


# ---------------------------------------------------------------------------
# dep
# ---------------------------------------------------------------------------

def _edge_payload(result: Any) -> dict[str, Any]:
    return {
        "outcome": result.outcome.value,
        "taskId": result.blocked_id,
        "blockedByTaskId": result.blocker_id,
        "message": result.message,
    }


def _dep_add(args: argparse.Namespace) -> int:
    result = _run(args, lambda engine: engine.add_dependency(args.task_id, args.blocked_by))
    if not result.ok:
        sys.stderr.write(result.message + "\n")
        return 1
    _emit(_edge_payload(result))
    return 0


def _dep_remove(args: argparse.Namespace) -> int:
    result = _run(args, lambda engine: engine.remove_dependency(args.task_id, args.blocked_by))
    if not result.ok:
        sys.stderr.write(result.message + "\n")
        return 1
    _emit(_edge_payload(result))
    return 0


def _dep_graph(args: argparse.Namespace) -> int:
    part = _run(args, lambda engine: engine.get_dependency_graph(args.project_id))
    _emit({
        "summary": part.summary(),
        "ready": [{"id": t.id, "name": t.name} for t in part.ready],
        "blocked": [{"id": t.id, "name": t.name, "blockedBy": t.blocked_by} for t in part.blocked],
        "blocking": [{"id": t.id, "name": t.name, "blocks": t.blocks} for t in part.blocking],
    })
    return 0


def _dep_order(args: argparse.Namespace) -> int:
    views = _run(
        args,
        lambda engine: engine.suggest_task_order(args.project_id, include_completed=args.include_completed),
    )
    if args.json:
        _emit({"order": [v.id for v in views]})
    else:
        _task_table("Suggested order", views)
    return 0


# ---------------------------------------------------------------------------
# project
# ---------------------------------------------------------------------------

def _project_create(args: argparse.Namespace) -> int:
    if args.parent:
        project = _run(
            args,
            lambda engine: engine.create_subproject(args.parent, args.name, args.description, args.color),
        )
    else:
        project = _run(args, lambda engine: engine.create_project(args.name, args.description, args.color))
    payload = project.to_dict()
    payload.pop("tasks", None)
    _emit({"project": payload})
    return 0


def _project_delete(args: argparse.Namespace) -> int:
    project = _run(args, lambda engine: engine.delete_project(project_id=args.project_id, project_name=args.name))
    _emit({"deleted": project.id, "name": project.name, "tasks": len(project.tasks)})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskflow", description="Taskflow task store CLI")
    parser.add_argument("--data-file", default=None, help="Task document path (default: per-user data dir)")
    parser.add_argument("--log-level", default=None, help="Log level (default: INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    statuses = [s.value for s in TaskStatus]
    priorities = [p.value for p in TaskPriority]

    task = subparsers.add_parser("task", help="Manage tasks")
    task_sub = task.add_subparsers(dest="task_cmd", required=True)
    tcreate = task_sub.add_parser("create", help="Create a task")
    tcreate.add_argument("name")
    tcreate.add_argument("--description", default="")
    tcreate.add_argument("--project", default=None, help="Project name (created if missing)")
    tcreate.add_argument("--priority", default="none", choices=priorities)
    tcreate.add_argument("--execution-type", default="manual", choices=[e.value for e in ExecutionType])
    tcreate.add_argument("--due-date", default=None)
    tcreate.add_argument("--scheduled-date", default=None)
    tcreate.add_argument("--scheduled-time", default=None)
    tcreate.add_argument("--estimated-minutes", default=None, type=float)
    tcreate.add_argument("--tag", action="append", help="Tag name (repeatable)")
    tcreate.set_defaults(func=_task_create)
    tlist = task_sub.add_parser("list", help="List tasks")
    tlist.add_argument("--status", default=None, choices=statuses + ["all"])
    tlist.add_argument("--project", default=None, help="Project name substring")
    tlist.add_argument("--json", action="store_true")
    tlist.set_defaults(func=_task_list)
    tshow = task_sub.add_parser("show", help="Show a task or subtask")
    tshow.add_argument("task_id")
    tshow.set_defaults(func=_task_show)
    tcomplete = task_sub.add_parser("complete", help="Mark a task or subtask done")
    tcomplete.add_argument("task_id")
    tcomplete.set_defaults(func=_task_complete)
    tupdate = task_sub.add_parser("update", help="Update task fields")
    tupdate.add_argument("task_id")
    tupdate.add_argument("--name", default=None)
    tupdate.add_argument("--description", default=None)
    tupdate.add_argument("--status", default=None, choices=statuses)
    tupdate.add_argument("--priority", default=None, choices=priorities)
    tupdate.add_argument("--due-date", default=None)
    tupdate.add_argument("--scheduled-date", default=None)
    tupdate.add_argument("--scheduled-time", default=None)
    tupdate.add_argument("--estimated-minutes", default=None, type=float)
    tupdate.add_argument("--assigned-to", default=None)
    tupdate.set_defaults(func=_task_update)
    tdelete = task_sub.add_parser("delete", help="Delete a task or subtask")
    tdelete.add_argument("task_id")
    tdelete.set_defaults(func=_task_delete)

    dep = subparsers.add_parser("dep", help="Manage task dependencies")
    dep_sub = dep.add_subparsers(dest="dep_cmd", required=True)
    dadd = dep_sub.add_parser("add", help="Make TASK_ID wait on BLOCKED_BY")
    dadd.add_argument("task_id")
    dadd.add_argument("blocked_by")
    dadd.set_defaults(func=_dep_add)
    dremove = dep_sub.add_parser("remove", help="Remove a dependency")
    dremove.add_argument("task_id")
    dremove.add_argument("blocked_by")
    dremove.set_defaults(func=_dep_remove)
    dgraph = dep_sub.add_parser("graph", help="Show ready/blocked/blocking tasks")
    dgraph.add_argument("--project-id", default=None)
    dgraph.set_defaults(func=_dep_graph)
    dorder = dep_sub.add_parser("order", help="Suggest an execution order")
    dorder.add_argument("--project-id", default=None)
    dorder.add_argument("--include-completed", action="store_true")
    dorder.add_argument("--json", action="store_true")
    dorder.set_defaults(func=_dep_order)

    project = subparsers.add_parser("project", help="Manage projects")
    project_sub = project.add_subparsers(dest="project_cmd", required=True)
    pcreate = project_sub.add_parser("create", help="Create a project")
    pcreate.add_argument("name")
    pcreate.add_argument("--description", default="")
    pcreate.add_argument("--color", default=None)
    pcreate.add_argument("--parent", default=None, help="Parent project ID (creates a subproject)")
    pcreate.set_defaults(func=_project_create)
    pdelete = project_sub.add_parser("delete", help="Delete a project and its tasks")
    pdelete.add_argument("project_id", nargs="?", default=None)
    pdelete.add_argument("--name", default=None)
    pdelete.set_defaults(func=_project_delete)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return int(handler(args) or 0)
    except TaskflowError as exc:
        sys.stderr.write(str(exc) + "\n")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
