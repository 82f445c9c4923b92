from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

from goal_planner.core.ai.contracts import GoalPlan
from goal_planner.core.errors import PlanImportError, PlannerError
from goal_planner.core.graph.integrity import detect_cycles, render_path
from goal_planner.core.model import Goal
from goal_planner.core.service.mutations import MutationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyPlanResult:
    goal: Goal
    created_goal: bool
    milestone_ids: dict[int, str]
    task_ids: dict[int, str]


def check_plan(plan: GoalPlan) -> None:
    """Reject plans whose local ids collide, dangle, or loop, before anything is written."""

    seen: dict[int, str] = {}
    deps_by_local: dict[str, list[str]] = {}
    for mi, m in enumerate(plan.milestones):
        for ti, t in enumerate(m.tasks):
            if t.local_id in seen:
                raise PlanImportError(
                    code="E_DUPLICATE_ID",
                    message=f"task id {t.local_id} is used more than once",
                    field=f"milestones[{mi}].tasks[{ti}].id",
                )
            seen[t.local_id] = t.title
            deps_by_local[str(t.local_id)] = [str(d) for d in t.depends_on]

    for mi, m in enumerate(plan.milestones):
        for ti, t in enumerate(m.tasks):
            for di, dep in enumerate(t.depends_on):
                if dep == t.local_id:
                    raise PlanImportError(
                        code="E_SELF_DEPENDENCY",
                        message=f"task {dep} depends on itself",
                        field=f"milestones[{mi}].tasks[{ti}].depends_on[{di}]",
                    )
                if dep not in seen:
                    raise PlanImportError(
                        code="E_UNKNOWN_DEPENDENCY",
                        message=f"depends_on references unknown plan task id: {dep}",
                        field=f"milestones[{mi}].tasks[{ti}].depends_on[{di}]",
                    )

    cycles = detect_cycles(deps_by_local)
    if cycles:
        raise PlanImportError(
            code="E_DEPENDENCY_CYCLE",
            message="dependency cycle in plan: " + render_path(cycles[0]),
            field="milestones",
        )


def apply_goal_plan(
    service: MutationService, plan: GoalPlan, *, goal_id: Optional[str] = None
) -> ApplyPlanResult:
    """Materialize a plan through the mutation service.

    Plan-local integer ids are remapped to the ids the service allocates. On
    failure, everything created so far is deleted again and the error is
    re-raised.
    """

    check_plan(plan)

    created_goal = goal_id is None
    if goal_id is None:
        goal = service.create_goal(plan.goal_title or "", plan.goal_description)
    else:
        goal = service.get_goal(goal_id)

    milestone_ids: dict[int, str] = {}
    task_ids: dict[int, str] = {}
    pending: list[tuple[str, list[int]]] = []

    try:
        for m in sorted(plan.milestones, key=lambda x: x.order):
            created_m = service.create_milestone(goal.id, m.title, m.description)
            milestone_ids[m.local_id] = created_m.id

            for t in sorted(m.tasks, key=lambda x: x.order):
                ready = [task_ids[d] for d in t.depends_on if d in task_ids]
                created_t = service.create_task(
                    created_m.id,
                    t.title,
                    t.description,
                    depends_on=ready,
                    estimated_minutes=t.estimated_minutes,
                )
                task_ids[t.local_id] = created_t.id
                if len(ready) != len(t.depends_on):
                    pending.append((created_t.id, t.depends_on))

        # Forward references: link once every task exists.
        for task_id, local_deps in pending:
            current = service.get_task(task_id)
            service.update_task(replace(current, depends_on=tuple(task_ids[d] for d in local_deps)))
    except PlannerError:
        _rollback(service, goal.id, created_goal, list(milestone_ids.values()))
        raise

    logger.info(
        "applied plan to goal %s: %s milestones, %s tasks",
        goal.id,
        len(milestone_ids),
        len(task_ids),
    )
    return ApplyPlanResult(
        goal=service.get_goal(goal.id),
        created_goal=created_goal,
        milestone_ids=milestone_ids,
        task_ids=task_ids,
    )


def _rollback(service: MutationService, goal_id: str, created_goal: bool, milestone_ids: list[str]) -> None:
    try:
        if created_goal:
            service.delete_goal(goal_id)
        else:
            for mid in reversed(milestone_ids):
                service.delete_milestone(mid)
    except PlannerError:
        logger.error("rollback of partially applied plan on goal %s failed", goal_id, exc_info=True)
