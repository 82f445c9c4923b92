from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from goal_planner.core.errors import PlanImportError


@dataclass(frozen=True)
class PlanTask:
    local_id: int
    title: str
    order: int
    depends_on: list[int]
    description: str = ""
    estimated_minutes: Optional[int] = None


@dataclass(frozen=True)
class PlanMilestone:
    local_id: int
    title: str
    order: int
    tasks: list[PlanTask]
    description: str = ""


@dataclass(frozen=True)
class GoalPlan:
    goal_title: Optional[str]
    milestones: list[PlanMilestone]
    goal_description: Optional[str] = None


def parse_goal_plan(obj: dict[str, Any]) -> GoalPlan:
    """Parse the `create_goal_plan` tool input.

    Shape only; titles, dependency resolution and cycles are checked when the
    plan is applied.
    """

    if not isinstance(obj, dict):
        raise PlanImportError(code="E_INVALID_TYPE", message="plan must be an object")

    goal_title = obj.get("goal_title")
    if goal_title is not None and not isinstance(goal_title, str):
        raise PlanImportError(code="E_INVALID_TYPE", message="goal_title must be a string", field="goal_title")

    goal_description = obj.get("goal_description")
    if goal_description is not None and not isinstance(goal_description, str):
        raise PlanImportError(
            code="E_INVALID_TYPE", message="goal_description must be a string", field="goal_description"
        )

    milestones_raw = obj.get("milestones")
    if not isinstance(milestones_raw, list):
        raise PlanImportError(code="E_REQUIRED_FIELD", message="milestones must be a list", field="milestones")

    milestones: list[PlanMilestone] = []
    for mi, m in enumerate(milestones_raw):
        path = f"milestones[{mi}]"
        if not isinstance(m, dict):
            raise PlanImportError(code="E_INVALID_TYPE", message="milestone must be an object", field=path)
        tasks_raw = m.get("tasks", [])
        if not isinstance(tasks_raw, list):
            raise PlanImportError(code="E_INVALID_TYPE", message="tasks must be a list", field=f"{path}.tasks")

        tasks: list[PlanTask] = []
        for ti, t in enumerate(tasks_raw):
            tpath = f"{path}.tasks[{ti}]"
            if not isinstance(t, dict):
                raise PlanImportError(code="E_INVALID_TYPE", message="task must be an object", field=tpath)
            deps = t.get("depends_on", [])
            if not isinstance(deps, list) or any(not _is_int(d) for d in deps):
                raise PlanImportError(
                    code="E_INVALID_TYPE",
                    message="depends_on must be a list of integers",
                    field=f"{tpath}.depends_on",
                )
            minutes = t.get("estimated_effort_minutes")
            if minutes is not None and not _is_int(minutes):
                raise PlanImportError(
                    code="E_INVALID_TYPE",
                    message="estimated_effort_minutes must be an integer",
                    field=f"{tpath}.estimated_effort_minutes",
                )
            tasks.append(
                PlanTask(
                    local_id=_int_field(t, "id", tpath),
                    title=_str_field(t, "title", tpath),
                    order=_int_field(t, "order", tpath, default=ti),
                    depends_on=list(deps),
                    description=_str_field(t, "description", tpath, default=""),
                    estimated_minutes=minutes,
                )
            )

        milestones.append(
            PlanMilestone(
                local_id=_int_field(m, "id", path, default=mi),
                title=_str_field(m, "title", path),
                order=_int_field(m, "order", path, default=mi),
                tasks=tasks,
                description=_str_field(m, "description", path, default=""),
            )
        )

    return GoalPlan(goal_title=goal_title, milestones=milestones, goal_description=goal_description)


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _int_field(obj: dict[str, Any], key: str, path: str, default: Optional[int] = None) -> int:
    v = obj.get(key, default)
    if not _is_int(v):
        raise PlanImportError(code="E_INVALID_TYPE", message=f"{key} must be an integer", field=f"{path}.{key}")
    return v


def _str_field(obj: dict[str, Any], key: str, path: str, default: Optional[str] = None) -> str:
    v = obj.get(key, default)
    if v is None and default is not None:
        v = default
    if not isinstance(v, str):
        raise PlanImportError(code="E_INVALID_TYPE", message=f"{key} must be a string", field=f"{path}.{key}")
    return v
