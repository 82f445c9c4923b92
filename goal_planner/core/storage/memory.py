from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Protocol

from goal_planner.core.errors import NotFoundError, StorageError
from goal_planner.core.model import Goal, Milestone, Task

logger = logging.getLogger(__name__)


class Storage(Protocol):
    """Persistence collaborator. Every call is scoped to the owning user."""

    def fetch_goals(self, user_id: str) -> list[Goal]: ...

    def fetch_goal(self, user_id: str, goal_id: str) -> Optional[Goal]: ...

    def fetch_milestones(self, user_id: str, goal_id: str) -> list[Milestone]: ...

    def fetch_milestone(self, user_id: str, milestone_id: str) -> Optional[Milestone]: ...

    def fetch_tasks(self, user_id: str, milestone_id: str) -> list[Task]: ...

    def fetch_task(self, user_id: str, task_id: str) -> Optional[Task]: ...

    def insert_goal(self, user_id: str, goal: Goal) -> Goal: ...

    def insert_milestone(self, user_id: str, milestone: Milestone) -> Milestone: ...

    def insert_task(self, user_id: str, task: Task) -> Task: ...

    def update_goal(self, user_id: str, goal: Goal) -> Goal: ...

    def update_milestone(self, user_id: str, milestone: Milestone) -> Milestone: ...

    def update_task(self, user_id: str, task: Task) -> Task: ...

    def delete_goal(self, user_id: str, goal_id: str) -> None: ...

    def delete_milestone(self, user_id: str, milestone_id: str) -> None: ...

    def delete_task(self, user_id: str, task_id: str) -> None: ...

    def batch(self): ...


class InMemoryStorage:
    """Dict-backed storage with per-user isolation and cascade deletes.

    `batch()` groups several writes into one all-or-nothing unit: on any
    exception inside the block the tables are restored to what they were when
    the outermost batch opened.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._goals: dict[str, Goal] = {}
        self._milestones: dict[str, Milestone] = {}
        self._tasks: dict[str, Task] = {}
        self._batch_depth = 0

    # -- reads -------------------------------------------------------------

    def fetch_goals(self, user_id: str) -> list[Goal]:
        with self._lock:
            goals = [g for g in self._goals.values() if g.user_id == user_id]
        # Newest first, like the goals list.
        return sorted(goals, key=lambda g: g.created_at, reverse=True)

    def fetch_goal(self, user_id: str, goal_id: str) -> Optional[Goal]:
        with self._lock:
            g = self._goals.get(goal_id)
        if g is None or g.user_id != user_id:
            return None
        return g

    def fetch_milestones(self, user_id: str, goal_id: str) -> list[Milestone]:
        with self._lock:
            if self.fetch_goal(user_id, goal_id) is None:
                return []
            ms = [m for m in self._milestones.values() if m.goal_id == goal_id]
        return sorted(ms, key=lambda m: (m.order_index, m.created_at))

    def fetch_milestone(self, user_id: str, milestone_id: str) -> Optional[Milestone]:
        with self._lock:
            m = self._milestones.get(milestone_id)
            if m is None or self.fetch_goal(user_id, m.goal_id) is None:
                return None
            return m

    def fetch_tasks(self, user_id: str, milestone_id: str) -> list[Task]:
        with self._lock:
            if self.fetch_milestone(user_id, milestone_id) is None:
                return []
            ts = [t for t in self._tasks.values() if t.milestone_id == milestone_id]
        return sorted(ts, key=lambda t: (t.order_index, t.created_at))

    def fetch_task(self, user_id: str, task_id: str) -> Optional[Task]:
        with self._lock:
            t = self._tasks.get(task_id)
            if t is None or self.fetch_milestone(user_id, t.milestone_id) is None:
                return None
            return t

    # -- writes ------------------------------------------------------------

    def insert_goal(self, user_id: str, goal: Goal) -> Goal:
        if goal.user_id != user_id:
            raise StorageError(
                code="E_FORBIDDEN",
                message="goal belongs to a different user",
                entity=goal.id,
                field="user_id",
            )
        with self._write():
            self._reject_duplicate(goal.id)
            self._goals[goal.id] = goal
        return goal

    def insert_milestone(self, user_id: str, milestone: Milestone) -> Milestone:
        with self._write():
            self._reject_duplicate(milestone.id)
            self._require_goal(user_id, milestone.goal_id)
            self._milestones[milestone.id] = milestone
        return milestone

    def insert_task(self, user_id: str, task: Task) -> Task:
        with self._write():
            self._reject_duplicate(task.id)
            self._require_milestone(user_id, task.milestone_id)
            self._tasks[task.id] = task
        return task

    def update_goal(self, user_id: str, goal: Goal) -> Goal:
        with self._write():
            current = self._require_goal(user_id, goal.id)
            if goal.user_id != current.user_id:
                raise StorageError(
                    code="E_FORBIDDEN",
                    message="goal owner cannot change",
                    entity=goal.id,
                    field="user_id",
                )
            self._goals[goal.id] = goal
        return goal

    def update_milestone(self, user_id: str, milestone: Milestone) -> Milestone:
        with self._write():
            self._require_milestone(user_id, milestone.id)
            self._require_goal(user_id, milestone.goal_id)
            self._milestones[milestone.id] = milestone
        return milestone

    def update_task(self, user_id: str, task: Task) -> Task:
        with self._write():
            self._require_task(user_id, task.id)
            self._require_milestone(user_id, task.milestone_id)
            self._tasks[task.id] = task
        return task

    def delete_goal(self, user_id: str, goal_id: str) -> None:
        with self._write():
            self._require_goal(user_id, goal_id)
            for mid in [m.id for m in self._milestones.values() if m.goal_id == goal_id]:
                self._drop_milestone(mid)
            del self._goals[goal_id]

    def delete_milestone(self, user_id: str, milestone_id: str) -> None:
        with self._write():
            self._require_milestone(user_id, milestone_id)
            self._drop_milestone(milestone_id)

    def delete_task(self, user_id: str, task_id: str) -> None:
        with self._write():
            self._require_task(user_id, task_id)
            del self._tasks[task_id]

    @contextmanager
    def batch(self) -> Iterator[None]:
        with self._lock:
            outermost = self._batch_depth == 0
            if outermost:
                saved = (dict(self._goals), dict(self._milestones), dict(self._tasks))
            self._batch_depth += 1
            try:
                yield
                if outermost:
                    self._commit()
            except BaseException:
                if outermost:
                    self._goals, self._milestones, self._tasks = saved
                    logger.debug("storage batch rolled back")
                raise
            finally:
                self._batch_depth -= 1

    # -- internals ---------------------------------------------------------

    @contextmanager
    def _write(self) -> Iterator[None]:
        # A single write is a batch of one, so file-backed subclasses persist it.
        with self.batch():
            yield

    def _commit(self) -> None:
        """Hook for subclasses that persist the tables; runs when the outermost batch exits."""

    def _drop_milestone(self, milestone_id: str) -> None:
        for tid in [t.id for t in self._tasks.values() if t.milestone_id == milestone_id]:
            del self._tasks[tid]
        del self._milestones[milestone_id]

    def _reject_duplicate(self, entity_id: str) -> None:
        if entity_id in self._goals or entity_id in self._milestones or entity_id in self._tasks:
            raise StorageError(
                code="E_DUPLICATE_ID",
                message=f"an entity with id {entity_id} already exists",
                entity=entity_id,
                field="id",
            )

    def _require_goal(self, user_id: str, goal_id: str) -> Goal:
        g = self.fetch_goal(user_id, goal_id)
        if g is None:
            raise NotFoundError(
                code="E_GOAL_NOT_FOUND", message=f"goal not found: {goal_id}", entity=goal_id
            )
        return g

    def _require_milestone(self, user_id: str, milestone_id: str) -> Milestone:
        m = self.fetch_milestone(user_id, milestone_id)
        if m is None:
            raise NotFoundError(
                code="E_MILESTONE_NOT_FOUND",
                message=f"milestone not found: {milestone_id}",
                entity=milestone_id,
            )
        return m

    def _require_task(self, user_id: str, task_id: str) -> Task:
        t = self.fetch_task(user_id, task_id)
        if t is None:
            raise NotFoundError(
                code="E_TASK_NOT_FOUND", message=f"task not found: {task_id}", entity=task_id
            )
        return t
