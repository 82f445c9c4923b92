from __future__ import annotations

import json
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from goal_planner.core.ai.apply_plan import apply_goal_plan
from goal_planner.core.ai.contracts import parse_goal_plan
from goal_planner.core.ai.dispatcher import ToolDispatcher, describe_goal
from goal_planner.core.ai.tools import tool_definitions
from goal_planner.core.availability.availability import (
    available_tasks,
    available_tasks_across_goals,
    classify_tasks,
    goal_progress,
)
from goal_planner.core.config import load_settings
from goal_planner.core.errors import ConfigError, PlannerError, StorageError, ValidationError
from goal_planner.core.graph.integrity import dangling_dependencies, deps_by_task, detect_cycles
from goal_planner.core.io.load_document import load_document
from goal_planner.core.logging_config import setup_logging
from goal_planner.core.model import parse_datetime, to_record
from goal_planner.core.service.mutations import MutationService
from goal_planner.core.service.notifications import LoggingNotifier
from goal_planner.core.storage.yaml_store import YamlFileStorage

app = typer.Typer(add_completion=False, no_args_is_help=True)

STORE_OPTION = typer.Option(None, "--store", help="Path to the YAML store (default: settings)")
USER_OPTION = typer.Option(None, "--user", help="Owning user id (default: settings)")
CONFIG_OPTION = typer.Option(None, "--config", help="Optional YAML settings file")


@app.callback()
def _callback() -> None:
    """Goal planner CLI."""
    return


@app.command("create-goal")
def create_goal(
    title: str = typer.Argument(...),
    description: Optional[str] = typer.Option(None, "--description"),
    deadline: Optional[str] = typer.Option(None, "--deadline", help="ISO 8601 date or date-time"),
    store: Optional[str] = STORE_OPTION,
    user: Optional[str] = USER_OPTION,
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """Create a goal and print its id."""
    service = _open_service(store, user, config)
    try:
        goal = service.create_goal(title, description, _parse_when(deadline, "deadline"))
    except PlannerError as e:
        _fail(e)
    typer.echo(goal.id)


@app.command("create-milestone")
def create_milestone(
    goal_id: str = typer.Argument(...),
    title: str = typer.Argument(...),
    description: str = typer.Option("", "--description"),
    store: Optional[str] = STORE_OPTION,
    user: Optional[str] = USER_OPTION,
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """Append a milestone to a goal and print its id."""
    service = _open_service(store, user, config)
    try:
        milestone = service.create_milestone(goal_id, title, description)
    except PlannerError as e:
        _fail(e)
    typer.echo(milestone.id)


@app.command("create-task")
def create_task(
    milestone_id: str = typer.Argument(...),
    title: str = typer.Argument(...),
    description: str = typer.Option("", "--description"),
    dep: Optional[list[str]] = typer.Option(None, "--dep", help="Task id this task depends on (repeatable)"),
    chain: bool = typer.Option(
        False, "--chain", help="Depend on the milestone's last task when no --dep is given"
    ),
    minutes: Optional[int] = typer.Option(None, "--minutes", help="Estimated duration in minutes"),
    deadline: Optional[str] = typer.Option(None, "--deadline", help="ISO 8601 date or date-time"),
    store: Optional[str] = STORE_OPTION,
    user: Optional[str] = USER_OPTION,
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """Append a task to a milestone and print its id."""
    service = _open_service(store, user, config)
    try:
        task = service.create_task(
            milestone_id,
            title,
            description,
            depends_on=dep or None,
            deadline=_parse_when(deadline, "deadline"),
            estimated_minutes=minutes,
            chain=chain,
        )
    except PlannerError as e:
        _fail(e)
    typer.echo(task.id)


@app.command("toggle")
def toggle(
    task_id: str = typer.Argument(...),
    store: Optional[str] = STORE_OPTION,
    user: Optional[str] = USER_OPTION,
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """Flip a task between completed and not completed."""
    service = _open_service(store, user, config)
    try:
        task = service.toggle_task_completion(task_id)
    except PlannerError as e:
        _fail(e)
    state = "completed" if task.is_completed else "not completed"
    typer.echo(f"OK: {task.title} is {state}")


@app.command("delete-task")
def delete_task(
    task_id: str = typer.Argument(...),
    store: Optional[str] = STORE_OPTION,
    user: Optional[str] = USER_OPTION,
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """Delete a task; dependents lose the dependency."""
    service = _open_service(store, user, config)
    try:
        service.delete_task(task_id)
    except PlannerError as e:
        _fail(e)
    typer.echo(f"OK: deleted task {task_id}")


@app.command("delete-milestone")
def delete_milestone(
    milestone_id: str = typer.Argument(...),
    store: Optional[str] = STORE_OPTION,
    user: Optional[str] = USER_OPTION,
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """Delete a milestone with its tasks."""
    service = _open_service(store, user, config)
    try:
        service.delete_milestone(milestone_id)
    except PlannerError as e:
        _fail(e)
    typer.echo(f"OK: deleted milestone {milestone_id}")


@app.command("delete-goal")
def delete_goal(
    goal_id: str = typer.Argument(...),
    store: Optional[str] = STORE_OPTION,
    user: Optional[str] = USER_OPTION,
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """Delete a goal with its milestones and tasks."""
    service = _open_service(store, user, config)
    try:
        service.delete_goal(goal_id)
    except PlannerError as e:
        _fail(e)
    typer.echo(f"OK: deleted goal {goal_id}")


@app.command("goals")
def goals(
    store: Optional[str] = STORE_OPTION,
    user: Optional[str] = USER_OPTION,
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """List goals with their progress, newest first."""
    service = _open_service(store, user, config)
    try:
        snapshots = service.load_all()
    except PlannerError as e:
        _fail(e)
    if not snapshots:
        typer.echo("No goals yet.")
        return
    for snap in snapshots:
        p = goal_progress(snap)
        typer.echo(f"{snap.goal.id}  {snap.goal.title}  ({p.completed}/{p.total} done)")


@app.command("show")
def show(
    goal_id: str = typer.Argument(...),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    store: Optional[str] = STORE_OPTION,
    user: Optional[str] = USER_OPTION,
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """Show a goal's milestones and tasks with their lock state."""
    _check_format(format)
    service = _open_service(store, user, config)
    try:
        snap = service.load_goal(goal_id)
    except PlannerError as e:
        _fail(e)

    if format == "json":
        typer.echo(json.dumps(describe_goal(snap), indent=2, sort_keys=True))
        return

    states = classify_tasks(snap)
    p = goal_progress(snap)
    console = Console()
    console.print(f"{snap.goal.title}  {int(p.ratio * 100)}% ({p.completed}/{p.total})")
    for m in snap.milestones:
        table = Table(title=m.title)
        table.add_column("Task")
        table.add_column("State")
        table.add_column("Id")
        for t in snap.tasks_by_milestone.get(m.id, []):
            table.add_row(t.title, states[t.id].value, t.id)
        console.print(table)


@app.command("available")
def available(
    goal_id: Optional[str] = typer.Argument(None, help="Limit to one goal"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    store: Optional[str] = STORE_OPTION,
    user: Optional[str] = USER_OPTION,
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """List actionable tasks, earliest-created first."""
    _check_format(format)
    service = _open_service(store, user, config)
    try:
        if goal_id is not None:
            snap = service.load_goal(goal_id)
            rows = [(snap.goal.id, t) for t in available_tasks(snap)]
        else:
            rows = [(i.goal.id, i.task) for i in available_tasks_across_goals(service.load_all())]
    except PlannerError as e:
        _fail(e)

    if format == "json":
        payload = {
            "command": "available",
            "count": len(rows),
            "tasks": [dict(to_record(t), goal_id=gid) for gid, t in rows],
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    if not rows:
        typer.echo("Nothing available right now.")
        return
    for _, t in rows:
        typer.echo(f"{t.id}  {t.title}")


@app.command("check")
def check(
    store: Optional[str] = STORE_OPTION,
    user: Optional[str] = USER_OPTION,
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """Report dependency cycles and dangling dependency ids in stored goals."""
    service = _open_service(store, user, config)
    try:
        snapshots = service.load_all()
    except PlannerError as e:
        _fail(e)

    problems: list[str] = []
    for snap in snapshots:
        for cycle in detect_cycles(deps_by_task(snap)):
            problems.append(f"{snap.goal.id}: E_DEPENDENCY_CYCLE: " + " -> ".join(cycle))
        for tid, missing in sorted(dangling_dependencies(snap).items()):
            problems.append(f"{snap.goal.id}:{tid}: E_DANGLING_DEPENDENCY: {', '.join(missing)}")

    if problems:
        for line in problems:
            typer.echo(line, err=True)
        raise typer.Exit(code=2)
    typer.echo(f"OK: {len(snapshots)} goals checked")


@app.command("tools")
def tools(
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """List the assistant tool catalogue."""
    _check_format(format)
    defs = tool_definitions()
    if format == "json":
        typer.echo(json.dumps(defs, indent=2, sort_keys=True))
        return
    typer.echo("Tools:")
    for d in defs:
        typer.echo(f"- {d['name']}: {d['description']}")


@app.command("tool")
def tool(
    name: str = typer.Argument(..., help="Tool name, see `tools`"),
    arguments: str = typer.Argument("{}", help="JSON object of tool arguments"),
    store: Optional[str] = STORE_OPTION,
    user: Optional[str] = USER_OPTION,
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """Invoke an assistant tool by name, as the chat agent would."""
    service = _open_service(store, user, config)
    result = ToolDispatcher(service).dispatch(name, arguments)
    if not result.ok:
        typer.echo(result.error or "", err=True)
        raise typer.Exit(code=1 if result.error_kind == "storage" else 2)
    typer.echo(json.dumps(result.payload, indent=2, sort_keys=True, default=str))


@app.command("import-plan")
def import_plan(
    path: str = typer.Argument(..., help="Path to a goal plan (.yaml/.yml/.json)"),
    goal: Optional[str] = typer.Option(None, "--goal", help="Append to this existing goal"),
    store: Optional[str] = STORE_OPTION,
    user: Optional[str] = USER_OPTION,
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """Create milestones and tasks from a plan document."""
    service = _open_service(store, user, config)
    try:
        plan = parse_goal_plan(load_document(path))
        result = apply_goal_plan(service, plan, goal_id=goal)
    except PlannerError as e:
        _fail(e)
    typer.echo(
        f"OK: goal {result.goal.id} "
        f"(milestones={len(result.milestone_ids)}, tasks={len(result.task_ids)})"
    )


def _open_service(store: Optional[str], user: Optional[str], config: Optional[str]) -> MutationService:
    try:
        settings = load_settings(config)
        setup_logging(settings.log_level, settings.log_file)
        storage = YamlFileStorage(store or settings.store_path)
    except PlannerError as e:
        _fail(e)
    return MutationService(
        storage,
        user_id=user or settings.user_id,
        notifier=LoggingNotifier(),
    )


def _parse_when(value: Optional[str], name: str) -> Any:
    if value is None:
        return None
    try:
        return parse_datetime(value)
    except ValueError as e:
        _fail(ValidationError(code="E_INVALID_DATETIME", message=str(e), field=name))


def _check_format(format: str) -> None:
    if format not in ("text", "json"):
        _fail(
            ValidationError(
                code="E_UNKNOWN_FORMAT",
                message=f"unknown format: {format} (choose one of: text, json)",
                field="format",
            )
        )


def _fail(error: PlannerError) -> None:
    typer.echo(str(error), err=True)
    code = 1 if isinstance(error, (StorageError, ConfigError)) else 2
    raise typer.Exit(code=code)


def main() -> None:
    app(prog_name="goal-planner")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
