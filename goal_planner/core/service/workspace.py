from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Iterable, Optional

from goal_planner.core.availability.availability import (
    AvailableItem,
    GoalProgress,
    available_tasks,
    available_tasks_across_goals,
    completed_task_ids,
    goal_progress,
    is_available,
)
from goal_planner.core.errors import NotFoundError
from goal_planner.core.model import Goal, GoalSnapshot, Milestone, Task
from goal_planner.core.service.mutations import MutationService

logger = logging.getLogger(__name__)


class GoalWorkspace:
    """Presentation-side cache of the user's goals; the API a UI layer binds to.

    The cache only changes after the mutation service has confirmed a write,
    so a failed write leaves it exactly as it was. Availability is derived
    from a copy of the cache on every call and never cached itself.
    """

    def __init__(self, service: MutationService) -> None:
        self._service = service
        self._lock = threading.RLock()
        self.goals: list[Goal] = []
        self.milestones_by_goal: dict[str, list[Milestone]] = {}
        self.tasks_by_milestone: dict[str, list[Task]] = {}

    # -- loading -----------------------------------------------------------

    def refresh(self) -> None:
        snapshots = self._service.load_all()
        with self._lock:
            self.goals = [s.goal for s in snapshots]
            self.milestones_by_goal = {s.goal.id: list(s.milestones) for s in snapshots}
            self.tasks_by_milestone = {}
            for s in snapshots:
                for mid, tasks in s.tasks_by_milestone.items():
                    self.tasks_by_milestone[mid] = list(tasks)

    def refresh_goal(self, goal_id: str) -> None:
        try:
            snap = self._service.load_goal(goal_id)
        except NotFoundError:
            with self._lock:
                self._forget_goal(goal_id)
            return
        with self._lock:
            self._put_goal(snap.goal)
            for m in self.milestones_by_goal.get(goal_id, []):
                self.tasks_by_milestone.pop(m.id, None)
            self.milestones_by_goal[goal_id] = list(snap.milestones)
            for mid, tasks in snap.tasks_by_milestone.items():
                self.tasks_by_milestone[mid] = list(tasks)

    # -- derived state -----------------------------------------------------

    def snapshot(self, goal_id: str) -> GoalSnapshot:
        with self._lock:
            goal = next((g for g in self.goals if g.id == goal_id), None)
            if goal is None:
                raise NotFoundError(code="E_GOAL_NOT_FOUND", message=f"goal not found: {goal_id}", entity=goal_id)
            milestones = list(self.milestones_by_goal.get(goal_id, []))
            tasks = {m.id: list(self.tasks_by_milestone.get(m.id, [])) for m in milestones}
        return GoalSnapshot(goal=goal, milestones=milestones, tasks_by_milestone=tasks)

    def is_task_available(self, task: Task, goal_id: str) -> bool:
        try:
            snap = self.snapshot(goal_id)
        except NotFoundError:
            return False
        return is_available(task, completed_task_ids(snap))

    def available_tasks(self, goal_id: str) -> list[Task]:
        return available_tasks(self.snapshot(goal_id))

    def all_available_tasks(self) -> list[AvailableItem]:
        with self._lock:
            ids = [g.id for g in self.goals]
        return available_tasks_across_goals(self.snapshot(gid) for gid in ids)

    def progress(self, goal_id: str) -> GoalProgress:
        return goal_progress(self.snapshot(goal_id))

    # -- user gestures -----------------------------------------------------

    def add_goal(
        self, title: str, description: Optional[str] = None, deadline: Optional[datetime] = None
    ) -> Goal:
        goal = self._service.create_goal(title, description, deadline)
        with self._lock:
            self.goals.insert(0, goal)
            self.milestones_by_goal.setdefault(goal.id, [])
        return goal

    def update_goal(self, goal: Goal) -> Goal:
        updated = self._service.update_goal(goal)
        with self._lock:
            self._put_goal(updated)
        return updated

    def delete_goal(self, goal_id: str) -> None:
        self._service.delete_goal(goal_id)
        with self._lock:
            self._forget_goal(goal_id)

    def add_milestone(self, goal_id: str, title: str, description: str = "") -> Milestone:
        milestone = self._service.create_milestone(goal_id, title, description)
        with self._lock:
            self.milestones_by_goal.setdefault(goal_id, []).append(milestone)
            self.tasks_by_milestone.setdefault(milestone.id, [])
        return milestone

    def add_task(
        self,
        milestone_id: str,
        title: str,
        description: str = "",
        depends_on: Optional[Iterable[str]] = None,
    ) -> Task:
        """Add a task the way the goal screen does: chained to the previous sibling by default."""
        task = self._service.create_task(
            milestone_id, title, description, depends_on=depends_on, chain=depends_on is None
        )
        with self._lock:
            self.tasks_by_milestone.setdefault(milestone_id, []).append(task)
        return task

    def toggle_task(self, task_id: str) -> Task:
        updated = self._service.toggle_task_completion(task_id)
        with self._lock:
            self._put_task(updated)
        return updated

    def update_task(self, task: Task) -> Task:
        updated = self._service.update_task(task)
        # A move between milestones reorders two lists; reload the goal.
        self.refresh_goal(self._service.get_milestone(updated.milestone_id).goal_id)
        return updated

    def delete_task(self, task_id: str) -> None:
        task = self._service.get_task(task_id)
        goal_id = self._service.get_milestone(task.milestone_id).goal_id
        self._service.delete_task(task_id)
        self.refresh_goal(goal_id)

    def delete_milestone(self, milestone_id: str) -> None:
        goal_id = self._service.get_milestone(milestone_id).goal_id
        self._service.delete_milestone(milestone_id)
        self.refresh_goal(goal_id)

    # -- internals ---------------------------------------------------------

    def _put_goal(self, goal: Goal) -> None:
        for i, g in enumerate(self.goals):
            if g.id == goal.id:
                self.goals[i] = goal
                return
        self.goals.insert(0, goal)

    def _put_task(self, task: Task) -> None:
        tasks = self.tasks_by_milestone.setdefault(task.milestone_id, [])
        for i, t in enumerate(tasks):
            if t.id == task.id:
                tasks[i] = task
                return
        logger.debug("task %s not cached; appending", task.id)
        tasks.append(task)

    def _forget_goal(self, goal_id: str) -> None:
        self.goals = [g for g in self.goals if g.id != goal_id]
        for m in self.milestones_by_goal.pop(goal_id, []):
            self.tasks_by_milestone.pop(m.id, None)
