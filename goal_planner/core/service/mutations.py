"""Mutation service: the only write path for goals, milestones and tasks.

Every operation validates first, then writes. Operations that touch several
rows (cascade deletes, dependency repair) run inside one storage batch, so
callers observe either the whole change or none of it. Read-modify-write
sequences on the same goal are serialized; different goals proceed in
parallel.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterable, Iterator, Optional

from goal_planner.core.availability.availability import available_tasks
from goal_planner.core.errors import NotFoundError, PlannerError, StorageError, ValidationError
from goal_planner.core.graph.integrity import check_dependencies, deps_by_task
from goal_planner.core.model import Goal, GoalSnapshot, Milestone, Task, new_id, utc_now
from goal_planner.core.service.notifications import CompletionEvent, CompletionNotifier
from goal_planner.core.storage.memory import Storage

logger = logging.getLogger(__name__)


class _KeyedLocks:
    """Per-key re-entrant locks, dropped once no thread holds or waits on them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.RLock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]


class MutationService:
    def __init__(
        self,
        storage: Storage,
        *,
        user_id: str,
        notifier: Optional[CompletionNotifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        if not user_id:
            raise ValidationError(code="E_REQUIRED_FIELD", message="user_id is required", field="user_id")
        self._storage = storage
        self.user_id = user_id
        self._notifier = notifier
        self._clock = clock or utc_now
        self._new_id = id_factory or new_id
        self._locks = _KeyedLocks()

    # -- reads -------------------------------------------------------------

    def list_goals(self) -> list[Goal]:
        with self._guard("fetch_goals"):
            return self._storage.fetch_goals(self.user_id)

    def get_goal(self, goal_id: str) -> Goal:
        with self._guard("fetch_goal"):
            goal = self._storage.fetch_goal(self.user_id, goal_id)
        if goal is None:
            raise NotFoundError(code="E_GOAL_NOT_FOUND", message=f"goal not found: {goal_id}", entity=goal_id)
        return goal

    def get_milestone(self, milestone_id: str) -> Milestone:
        with self._guard("fetch_milestone"):
            m = self._storage.fetch_milestone(self.user_id, milestone_id)
        if m is None:
            raise NotFoundError(
                code="E_MILESTONE_NOT_FOUND",
                message=f"milestone not found: {milestone_id}",
                entity=milestone_id,
            )
        return m

    def get_task(self, task_id: str) -> Task:
        with self._guard("fetch_task"):
            t = self._storage.fetch_task(self.user_id, task_id)
        if t is None:
            raise NotFoundError(code="E_TASK_NOT_FOUND", message=f"task not found: {task_id}", entity=task_id)
        return t

    def load_goal(self, goal_id: str) -> GoalSnapshot:
        goal = self.get_goal(goal_id)
        with self._guard("fetch_milestones"):
            milestones = self._storage.fetch_milestones(self.user_id, goal_id)
            tasks = {m.id: self._storage.fetch_tasks(self.user_id, m.id) for m in milestones}
        return GoalSnapshot(goal=goal, milestones=milestones, tasks_by_milestone=tasks)

    def load_all(self) -> list[GoalSnapshot]:
        return [self.load_goal(g.id) for g in self.list_goals()]

    def available_tasks(self, goal_id: str) -> list[Task]:
        return available_tasks(self.load_goal(goal_id))

    # -- goals -------------------------------------------------------------

    def create_goal(
        self,
        title: str,
        description: Optional[str] = None,
        deadline: Optional[datetime] = None,
    ) -> Goal:
        clean_title = _require_title(title, entity="goal")
        _check_datetime(deadline, "deadline", entity="goal")
        now = self._clock()
        goal = Goal(
            id=self._new_id(),
            user_id=self.user_id,
            title=clean_title,
            description=_optional_text(description),
            deadline=deadline,
            created_at=now,
            updated_at=now,
        )
        with self._guard("insert_goal"):
            self._storage.insert_goal(self.user_id, goal)
        logger.info("created goal %s (%s)", goal.id, goal.title)
        return goal

    def update_goal(self, goal: Goal) -> Goal:
        clean_title = _require_title(goal.title, entity=goal.id)
        _check_datetime(goal.deadline, "deadline", entity=goal.id)
        with self._locks.hold(goal.id):
            current = self.get_goal(goal.id)
            updated = replace(
                current,
                title=clean_title,
                description=_optional_text(goal.description),
                deadline=goal.deadline,
                updated_at=self._clock(),
            )
            with self._guard("update_goal"):
                self._storage.update_goal(self.user_id, updated)
        logger.info("updated goal %s", goal.id)
        return updated

    def update_goal_description(self, goal_id: str, description: Optional[str]) -> Goal:
        current = self.get_goal(goal_id)
        return self.update_goal(replace(current, description=description))

    def update_goal_deadline(self, goal_id: str, deadline: Optional[datetime]) -> Goal:
        current = self.get_goal(goal_id)
        return self.update_goal(replace(current, deadline=deadline))

    def delete_goal(self, goal_id: str) -> None:
        with self._locks.hold(goal_id):
            self.get_goal(goal_id)
            with self._guard("delete_goal"):
                self._storage.delete_goal(self.user_id, goal_id)
        logger.info("deleted goal %s with its milestones and tasks", goal_id)

    # -- milestones --------------------------------------------------------

    def create_milestone(self, goal_id: str, title: str, description: Optional[str] = "") -> Milestone:
        clean_title = _require_title(title, entity="milestone")
        with self._locks.hold(goal_id):
            self.get_goal(goal_id)
            with self._guard("fetch_milestones"):
                siblings = self._storage.fetch_milestones(self.user_id, goal_id)
            now = self._clock()
            milestone = Milestone(
                id=self._new_id(),
                goal_id=goal_id,
                title=clean_title,
                description=(description or "").strip(),
                order_index=len(siblings),
                created_at=now,
                updated_at=now,
            )
            with self._guard("insert_milestone"):
                self._storage.insert_milestone(self.user_id, milestone)
        logger.info("created milestone %s in goal %s", milestone.id, goal_id)
        return milestone

    def update_milestone(self, milestone: Milestone) -> Milestone:
        clean_title = _require_title(milestone.title, entity=milestone.id)
        current = self.get_milestone(milestone.id)
        if milestone.goal_id != current.goal_id:
            raise ValidationError(
                code="E_IMMUTABLE_FIELD",
                message="a milestone cannot move to another goal",
                entity=milestone.id,
                field="goal_id",
            )
        with self._locks.hold(current.goal_id):
            current = self.get_milestone(milestone.id)
            updated = replace(
                current,
                title=clean_title,
                description=(milestone.description or "").strip(),
                order_index=milestone.order_index,
                updated_at=self._clock(),
            )
            with self._guard("update_milestone"):
                self._storage.update_milestone(self.user_id, updated)
        logger.info("updated milestone %s", milestone.id)
        return updated

    def delete_milestone(self, milestone_id: str) -> None:
        goal_id = self.get_milestone(milestone_id).goal_id
        with self._locks.hold(goal_id):
            self.get_milestone(milestone_id)
            snapshot = self.load_goal(goal_id)
            removed = {t.id for t in snapshot.tasks_by_milestone.get(milestone_id, [])}
            survivors = [t for t in snapshot.iter_tasks() if t.milestone_id != milestone_id]
            with self._guard("delete_milestone"), self._storage.batch():
                self._storage.delete_milestone(self.user_id, milestone_id)
                repaired = self._strip_dependencies(survivors, removed)
        logger.info(
            "deleted milestone %s (%s tasks, %s dependents repaired)",
            milestone_id,
            len(removed),
            repaired,
        )

    # -- tasks -------------------------------------------------------------

    def create_task(
        self,
        milestone_id: str,
        title: str,
        description: Optional[str] = "",
        depends_on: Optional[Iterable[str]] = None,
        deadline: Optional[datetime] = None,
        estimated_minutes: Optional[int] = None,
        *,
        chain: bool = False,
    ) -> Task:
        """Append a task to a milestone.

        With `chain=True` and no explicit `depends_on`, the new task depends on
        the milestone's current last task; an explicit (even empty) set wins.
        """

        clean_title = _require_title(title, entity="task")
        _check_minutes(estimated_minutes, entity="task")
        _check_datetime(deadline, "deadline", entity="task")
        goal_id = self.get_milestone(milestone_id).goal_id

        with self._locks.hold(goal_id):
            snapshot = self.load_goal(goal_id)
            if milestone_id not in snapshot.tasks_by_milestone:
                raise NotFoundError(
                    code="E_MILESTONE_NOT_FOUND",
                    message=f"milestone not found: {milestone_id}",
                    entity=milestone_id,
                )
            siblings = snapshot.tasks_by_milestone[milestone_id]
            task_id = self._new_id()
            if depends_on is None:
                requested = [siblings[-1].id] if chain and siblings else []
            else:
                requested = list(depends_on)
            deps = check_dependencies(task_id, requested, deps_by_task(snapshot))

            now = self._clock()
            task = Task(
                id=task_id,
                milestone_id=milestone_id,
                title=clean_title,
                description=(description or "").strip(),
                depends_on=deps,
                order_index=len(siblings),
                deadline=deadline,
                estimated_minutes=estimated_minutes,
                created_at=now,
                updated_at=now,
            )
            with self._guard("insert_task"):
                self._storage.insert_task(self.user_id, task)
        logger.info("created task %s in milestone %s (deps=%s)", task.id, milestone_id, list(deps))
        return task

    def update_task(self, task: Task) -> Task:
        """Replace the editable fields of a task.

        Completion state is owned by `toggle_task_completion` and is carried
        over from storage unchanged.
        """

        clean_title = _require_title(task.title, entity=task.id)
        _check_minutes(task.estimated_minutes, entity=task.id)
        _check_datetime(task.deadline, "deadline", entity=task.id)
        goal_id = self._goal_id_for_task(task.id)

        with self._locks.hold(goal_id):
            snapshot = self.load_goal(goal_id)
            current = snapshot.task_by_id().get(task.id)
            if current is None:
                raise NotFoundError(code="E_TASK_NOT_FOUND", message=f"task not found: {task.id}", entity=task.id)
            if task.milestone_id not in snapshot.tasks_by_milestone:
                raise ValidationError(
                    code="E_UNKNOWN_MILESTONE",
                    message=f"milestone_id must reference a milestone of the same goal: {task.milestone_id}",
                    entity=task.id,
                    field="milestone_id",
                )
            deps = check_dependencies(task.id, task.depends_on, deps_by_task(snapshot))
            updated = replace(
                current,
                milestone_id=task.milestone_id,
                title=clean_title,
                description=(task.description or "").strip(),
                depends_on=deps,
                order_index=task.order_index,
                deadline=task.deadline,
                estimated_minutes=task.estimated_minutes,
                updated_at=self._clock(),
            )
            with self._guard("update_task"):
                self._storage.update_task(self.user_id, updated)
        logger.info("updated task %s", task.id)
        return updated

    def toggle_task_completion(self, task_id: str) -> Task:
        goal_id = self._goal_id_for_task(task_id)
        with self._locks.hold(goal_id):
            current = self.get_task(task_id)
            now = self._clock()
            completed = not current.is_completed
            updated = replace(
                current,
                is_completed=completed,
                completed_at=now if completed else None,
                updated_at=now,
            )
            with self._guard("update_task"):
                self._storage.update_task(self.user_id, updated)
        logger.info("task %s marked %s", task_id, "completed" if completed else "not completed")

        if completed:
            self._notify(updated)
        return updated

    def delete_task(self, task_id: str) -> None:
        goal_id = self._goal_id_for_task(task_id)
        with self._locks.hold(goal_id):
            snapshot = self.load_goal(goal_id)
            if task_id not in snapshot.task_by_id():
                raise NotFoundError(code="E_TASK_NOT_FOUND", message=f"task not found: {task_id}", entity=task_id)
            others = [t for t in snapshot.iter_tasks() if t.id != task_id]
            with self._guard("delete_task"), self._storage.batch():
                self._storage.delete_task(self.user_id, task_id)
                repaired = self._strip_dependencies(others, {task_id})
        logger.info("deleted task %s (%s dependents repaired)", task_id, repaired)

    # -- internals ---------------------------------------------------------

    def _strip_dependencies(self, tasks: Iterable[Task], removed: set[str]) -> int:
        """Drop removed ids from dependency sets. Dependents lose the edge; no re-linking."""
        count = 0
        now = self._clock()
        for t in tasks:
            if not removed.intersection(t.depends_on):
                continue
            kept = tuple(d for d in t.depends_on if d not in removed)
            self._storage.update_task(self.user_id, replace(t, depends_on=kept, updated_at=now))
            count += 1
        return count

    def _goal_id_for_task(self, task_id: str) -> str:
        task = self.get_task(task_id)
        return self.get_milestone(task.milestone_id).goal_id

    def _notify(self, task: Task) -> None:
        if self._notifier is None or task.completed_at is None:
            return
        event = CompletionEvent(task_id=task.id, title=task.title, completed_at=task.completed_at)
        try:
            self._notifier.notify(event)
        except Exception:
            # Fire-and-forget: the completion is already persisted.
            logger.warning("completion notification failed for task %s", task.id, exc_info=True)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except PlannerError:
            raise
        except Exception as e:
            logger.warning("storage %s failed: %s", operation, e)
            raise StorageError(
                code="E_STORAGE",
                message=f"{operation} failed: {e}",
                field=operation,
            ) from e


def _require_title(title: object, *, entity: str) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError(
            code="E_REQUIRED_FIELD",
            message="title is required and must be a non-empty string",
            entity=entity,
            field="title",
        )
    return title.strip()


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value.strip()


def _check_minutes(value: object, *, entity: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(
            code="E_INVALID_TYPE",
            message="estimated_minutes must be a positive integer",
            entity=entity,
            field="estimated_minutes",
        )


def _check_datetime(value: object, name: str, *, entity: str) -> None:
    if value is not None and not isinstance(value, datetime):
        raise ValidationError(
            code="E_INVALID_TYPE",
            message=f"{name} must be a datetime",
            entity=entity,
            field=name,
        )
