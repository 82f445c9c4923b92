from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, eq=False)
class Goal:
    id: str
    user_id: str
    title: str
    created_at: datetime
    updated_at: datetime

    description: Optional[str] = None
    deadline: Optional[datetime] = None

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Goal) and other.id == self.id

    def __hash__(self) -> int:
        return hash(("goal", self.id))


@dataclass(frozen=True, eq=False)
class Milestone:
    id: str
    goal_id: str
    title: str
    order_index: int
    created_at: datetime
    updated_at: datetime

    description: str = ""

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Milestone) and other.id == self.id

    def __hash__(self) -> int:
        return hash(("milestone", self.id))


@dataclass(frozen=True, eq=False)
class Task:
    id: str
    milestone_id: str
    title: str
    order_index: int
    created_at: datetime
    updated_at: datetime

    description: str = ""
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    depends_on: tuple[str, ...] = ()
    deadline: Optional[datetime] = None
    estimated_minutes: Optional[int] = None

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Task) and other.id == self.id

    def __hash__(self) -> int:
        return hash(("task", self.id))


@dataclass(frozen=True)
class GoalSnapshot:
    """A goal with its milestones and tasks loaded, as read at one point in time."""

    goal: Goal
    milestones: list[Milestone]
    tasks_by_milestone: dict[str, list[Task]] = field(default_factory=dict)

    def iter_tasks(self):
        for m in self.milestones:
            yield from self.tasks_by_milestone.get(m.id, [])

    def task_by_id(self) -> dict[str, Task]:
        return {t.id: t for t in self.iter_tasks()}


# Stable field names shared by storage documents and AI tool payloads.
GOAL_FIELDS = ("id", "user_id", "title", "description", "deadline", "created_at", "updated_at")
MILESTONE_FIELDS = (
    "id",
    "goal_id",
    "title",
    "description",
    "order_index",
    "created_at",
    "updated_at",
)
TASK_FIELDS = (
    "id",
    "milestone_id",
    "title",
    "description",
    "is_completed",
    "completed_at",
    "depends_on",
    "order_index",
    "deadline",
    "estimated_minutes",
    "created_at",
    "updated_at",
)

_DATETIME_FIELDS = {"deadline", "completed_at", "created_at", "updated_at"}


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 string (or pass a datetime through). Naive values are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise ValueError(f"expected an ISO 8601 datetime string, got {type(value).__name__}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_record(entity: Goal | Milestone | Task) -> dict[str, Any]:
    if isinstance(entity, Goal):
        names = GOAL_FIELDS
    elif isinstance(entity, Milestone):
        names = MILESTONE_FIELDS
    else:
        names = TASK_FIELDS

    out: dict[str, Any] = {}
    for name in names:
        v = getattr(entity, name)
        if name in _DATETIME_FIELDS:
            v = format_datetime(v)
        elif name == "depends_on":
            v = list(v)
        out[name] = v
    return out


def goal_from_record(raw: dict[str, Any]) -> Goal:
    return Goal(
        id=raw["id"],
        user_id=raw["user_id"],
        title=raw["title"],
        description=raw.get("description"),
        deadline=parse_datetime(raw.get("deadline")),
        created_at=_required_datetime(raw, "created_at"),
        updated_at=_required_datetime(raw, "updated_at"),
    )


def milestone_from_record(raw: dict[str, Any]) -> Milestone:
    return Milestone(
        id=raw["id"],
        goal_id=raw["goal_id"],
        title=raw["title"],
        description=raw.get("description") or "",
        order_index=int(raw["order_index"]),
        created_at=_required_datetime(raw, "created_at"),
        updated_at=_required_datetime(raw, "updated_at"),
    )


def task_from_record(raw: dict[str, Any]) -> Task:
    minutes = raw.get("estimated_minutes")
    return Task(
        id=raw["id"],
        milestone_id=raw["milestone_id"],
        title=raw["title"],
        description=raw.get("description") or "",
        is_completed=bool(raw.get("is_completed", False)),
        completed_at=parse_datetime(raw.get("completed_at")),
        depends_on=tuple(raw.get("depends_on") or ()),
        order_index=int(raw["order_index"]),
        deadline=parse_datetime(raw.get("deadline")),
        estimated_minutes=int(minutes) if minutes is not None else None,
        created_at=_required_datetime(raw, "created_at"),
        updated_at=_required_datetime(raw, "updated_at"),
    )


def _required_datetime(raw: dict[str, Any], key: str) -> datetime:
    dt = parse_datetime(raw.get(key))
    if dt is None:
        raise ValueError(f"{key} is required")
    return dt
