"""Availability engine.

Everything here is a pure function of the snapshot passed in: no I/O, no
caching, and no failure mode. A dependency id that does not resolve to a
completed task of the same goal counts as unsatisfied, so dangling references
and cycle members simply stay blocked.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import AbstractSet, Iterable

from goal_planner.core.model import Goal, GoalSnapshot, Task


class TaskState(str, Enum):
    COMPLETED = "completed"
    AVAILABLE = "available"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class GoalProgress:
    completed: int
    total: int

    @property
    def remaining(self) -> int:
        return self.total - self.completed

    @property
    def ratio(self) -> float:
        if self.total == 0:
            return 0.0
        return self.completed / self.total


@dataclass(frozen=True)
class AvailableItem:
    task: Task
    goal: Goal
    milestone_id: str


def is_available(task: Task, completed_task_ids: AbstractSet[str]) -> bool:
    if task.is_completed:
        return False
    return all(dep in completed_task_ids for dep in task.depends_on)


def task_state(task: Task, completed_task_ids: AbstractSet[str]) -> TaskState:
    if task.is_completed:
        return TaskState.COMPLETED
    if is_available(task, completed_task_ids):
        return TaskState.AVAILABLE
    return TaskState.BLOCKED


def completed_task_ids(snapshot: GoalSnapshot) -> frozenset[str]:
    return frozenset(t.id for t in snapshot.iter_tasks() if t.is_completed)


def available_tasks(snapshot: GoalSnapshot) -> list[Task]:
    """Incomplete tasks whose dependencies are all completed, earliest-created first."""
    done = completed_task_ids(snapshot)
    found = [t for t in snapshot.iter_tasks() if not t.is_completed and is_available(t, done)]
    # sorted() is stable: equal timestamps keep milestone order, then task order.
    return sorted(found, key=lambda t: t.created_at)


def blocked_tasks(snapshot: GoalSnapshot) -> list[Task]:
    done = completed_task_ids(snapshot)
    found = [t for t in snapshot.iter_tasks() if task_state(t, done) is TaskState.BLOCKED]
    return sorted(found, key=lambda t: t.created_at)


def classify_tasks(snapshot: GoalSnapshot) -> dict[str, TaskState]:
    done = completed_task_ids(snapshot)
    return {t.id: task_state(t, done) for t in snapshot.iter_tasks()}


def goal_progress(snapshot: GoalSnapshot) -> GoalProgress:
    tasks = list(snapshot.iter_tasks())
    return GoalProgress(completed=sum(1 for t in tasks if t.is_completed), total=len(tasks))


def milestone_progress(snapshot: GoalSnapshot, milestone_id: str) -> GoalProgress:
    tasks = snapshot.tasks_by_milestone.get(milestone_id, [])
    return GoalProgress(completed=sum(1 for t in tasks if t.is_completed), total=len(tasks))


def available_tasks_across_goals(snapshots: Iterable[GoalSnapshot]) -> list[AvailableItem]:
    """Actionable tasks of every goal, each evaluated against its own goal's completed set."""
    items: list[AvailableItem] = []
    for snap in snapshots:
        done = completed_task_ids(snap)
        for m in snap.milestones:
            for t in snap.tasks_by_milestone.get(m.id, []):
                if is_available(t, done):
                    items.append(AvailableItem(task=t, goal=snap.goal, milestone_id=m.id))
    return sorted(items, key=lambda item: item.task.created_at)
