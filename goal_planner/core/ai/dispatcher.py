from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Optional

from goal_planner.core.ai.apply_plan import apply_goal_plan
from goal_planner.core.ai.contracts import parse_goal_plan
from goal_planner.core.availability.availability import (
    available_tasks,
    classify_tasks,
    goal_progress,
)
from goal_planner.core.errors import (
    GraphIntegrityError,
    NotFoundError,
    PlannerError,
    StorageError,
    ValidationError,
)
from goal_planner.core.model import GoalSnapshot, parse_datetime, to_record
from goal_planner.core.service.mutations import MutationService

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass(frozen=True)
class ToolResult:
    ok: bool
    payload: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    error_kind: Optional[str] = None

    def to_content(self) -> str:
        """Render for the assistant: the payload as JSON, or the error line."""
        if self.ok:
            return json.dumps(self.payload, sort_keys=True, default=str)
        return f"Error ({self.error_kind}): {self.error}"


ChangeListener = Callable[[str], None]


class ToolDispatcher:
    """Maps assistant tool calls onto mutation service operations.

    The dispatcher owns a reference to the service, never the reverse. After
    each successful mutation the optional `on_change` listener receives the
    affected goal id so presentation state can be re-derived.
    """

    def __init__(self, service: MutationService, *, on_change: Optional[ChangeListener] = None) -> None:
        self._service = service
        self._on_change = on_change
        self._handlers: dict[str, Callable[[dict[str, Any]], tuple[dict[str, Any], Optional[str]]]] = {
            "create_goal": self._create_goal,
            "edit_goal": self._edit_goal,
            "delete_goal": self._delete_goal,
            "create_milestone": self._create_milestone,
            "edit_milestone": self._edit_milestone,
            "delete_milestone": self._delete_milestone,
            "create_task": self._create_task,
            "edit_task": self._edit_task,
            "delete_task": self._delete_task,
            "view_goal": self._view_goal,
            "create_goal_plan": self._create_goal_plan,
        }

    @property
    def tool_names(self) -> list[str]:
        return sorted(self._handlers)

    def dispatch(self, name: str, arguments: dict[str, Any] | str | None) -> ToolResult:
        handler = self._handlers.get(name)
        if handler is None:
            return _failure(
                ValidationError(code="E_UNKNOWN_TOOL", message=f"unknown tool: {name}", field="name")
            )

        try:
            args = _decode_arguments(arguments)
            payload, changed_goal = handler(args)
        except PlannerError as e:
            logger.info("tool %s rejected: %s", name, e)
            return _failure(e)

        if changed_goal and self._on_change is not None:
            try:
                self._on_change(changed_goal)
            except Exception:
                logger.warning("change listener failed for goal %s", changed_goal, exc_info=True)

        logger.debug("tool %s succeeded", name)
        return ToolResult(ok=True, payload=payload)

    # -- goals -------------------------------------------------------------

    def _create_goal(self, args: dict[str, Any]):
        goal = self._service.create_goal(
            _req_str(args, "title"),
            _opt_str(args, "description"),
            _opt_datetime(args, "deadline"),
        )
        return {"goal_id": goal.id, "goal": to_record(goal)}, goal.id

    def _edit_goal(self, args: dict[str, Any]):
        current = self._service.get_goal(_req_str(args, "goal_id"))
        changes: dict[str, Any] = {}
        if "title" in args:
            changes["title"] = _req_str(args, "title")
        if "description" in args:
            changes["description"] = _opt_str(args, "description")
        if "deadline" in args:
            changes["deadline"] = _opt_datetime(args, "deadline")
        goal = self._service.update_goal(replace(current, **changes))
        return {"goal_id": goal.id, "goal": to_record(goal)}, goal.id

    def _delete_goal(self, args: dict[str, Any]):
        goal_id = _req_str(args, "goal_id")
        self._service.delete_goal(goal_id)
        return {"deleted_goal_id": goal_id}, goal_id

    # -- milestones --------------------------------------------------------

    def _create_milestone(self, args: dict[str, Any]):
        m = self._service.create_milestone(
            _req_str(args, "goal_id"),
            _req_str(args, "title"),
            _opt_str(args, "description") or "",
        )
        return {"milestone_id": m.id, "milestone": to_record(m)}, m.goal_id

    def _edit_milestone(self, args: dict[str, Any]):
        current = self._service.get_milestone(_req_str(args, "milestone_id"))
        changes: dict[str, Any] = {}
        if "title" in args:
            changes["title"] = _req_str(args, "title")
        if "description" in args:
            changes["description"] = _opt_str(args, "description") or ""
        if "order_index" in args:
            changes["order_index"] = _req_int(args, "order_index")
        m = self._service.update_milestone(replace(current, **changes))
        return {"milestone_id": m.id, "milestone": to_record(m)}, m.goal_id

    def _delete_milestone(self, args: dict[str, Any]):
        milestone_id = _req_str(args, "milestone_id")
        goal_id = self._service.get_milestone(milestone_id).goal_id
        self._service.delete_milestone(milestone_id)
        return {"deleted_milestone_id": milestone_id}, goal_id

    # -- tasks -------------------------------------------------------------

    def _create_task(self, args: dict[str, Any]):
        milestone_id = _req_str(args, "milestone_id")
        deps = _opt_str_list(args, "depends_on")
        t = self._service.create_task(
            milestone_id,
            _req_str(args, "title"),
            _opt_str(args, "description") or "",
            depends_on=deps if deps is not None else [],
            deadline=_opt_datetime(args, "deadline"),
            estimated_minutes=_opt_int(args, "estimated_minutes"),
        )
        goal_id = self._service.get_milestone(milestone_id).goal_id
        return {"task_id": t.id, "task": to_record(t)}, goal_id

    def _edit_task(self, args: dict[str, Any]):
        current = self._service.get_task(_req_str(args, "task_id"))
        for forbidden in ("is_completed", "completed_at"):
            if forbidden in args:
                raise ValidationError(
                    code="E_IMMUTABLE_FIELD",
                    message="completion is changed by completing the task, not by editing it",
                    entity=current.id,
                    field=forbidden,
                )
        changes: dict[str, Any] = {}
        if "title" in args:
            changes["title"] = _req_str(args, "title")
        if "description" in args:
            changes["description"] = _opt_str(args, "description") or ""
        if "depends_on" in args:
            changes["depends_on"] = tuple(_opt_str_list(args, "depends_on") or ())
        if "milestone_id" in args:
            changes["milestone_id"] = _req_str(args, "milestone_id")
        if "order_index" in args:
            changes["order_index"] = _req_int(args, "order_index")
        if "deadline" in args:
            changes["deadline"] = _opt_datetime(args, "deadline")
        if "estimated_minutes" in args:
            changes["estimated_minutes"] = _opt_int(args, "estimated_minutes")
        t = self._service.update_task(replace(current, **changes))
        goal_id = self._service.get_milestone(t.milestone_id).goal_id
        return {"task_id": t.id, "task": to_record(t)}, goal_id

    def _delete_task(self, args: dict[str, Any]):
        task_id = _req_str(args, "task_id")
        task = self._service.get_task(task_id)
        goal_id = self._service.get_milestone(task.milestone_id).goal_id
        self._service.delete_task(task_id)
        return {"deleted_task_id": task_id}, goal_id

    # -- reads / plans -----------------------------------------------------

    def _view_goal(self, args: dict[str, Any]):
        snapshot = self._service.load_goal(_req_str(args, "goal_id"))
        return describe_goal(snapshot), None

    def _create_goal_plan(self, args: dict[str, Any]):
        plan = parse_goal_plan(args)
        goal_id = args.get("goal_id")
        if goal_id is not None and not isinstance(goal_id, str):
            raise ValidationError(code="E_INVALID_TYPE", message="goal_id must be a string", field="goal_id")
        result = apply_goal_plan(self._service, plan, goal_id=goal_id)
        payload = {
            "goal_id": result.goal.id,
            "created_goal": result.created_goal,
            "milestone_ids": {str(k): v for k, v in result.milestone_ids.items()},
            "task_ids": {str(k): v for k, v in result.task_ids.items()},
        }
        return payload, result.goal.id


def describe_goal(snapshot: GoalSnapshot) -> dict[str, Any]:
    """Full goal structure with derived task states, as returned by view_goal."""
    states = classify_tasks(snapshot)
    progress = goal_progress(snapshot)
    milestones: list[dict[str, Any]] = []
    for m in snapshot.milestones:
        tasks = []
        for t in snapshot.tasks_by_milestone.get(m.id, []):
            rec = to_record(t)
            rec["state"] = states[t.id].value
            tasks.append(rec)
        mrec = to_record(m)
        mrec["tasks"] = tasks
        milestones.append(mrec)
    return {
        "goal": to_record(snapshot.goal),
        "progress": {"completed": progress.completed, "total": progress.total},
        "milestones": milestones,
        "available_task_ids": [t.id for t in available_tasks(snapshot)],
    }


def _failure(error: PlannerError) -> ToolResult:
    return ToolResult(ok=False, error=str(error), error_kind=error_kind(error))


def error_kind(error: PlannerError) -> str:
    if isinstance(error, GraphIntegrityError):
        return "graph_integrity"
    if isinstance(error, NotFoundError):
        return "not_found"
    if isinstance(error, StorageError):
        return "storage"
    if isinstance(error, ValidationError):
        return "validation"
    return "error"


def _decode_arguments(arguments: dict[str, Any] | str | None) -> dict[str, Any]:
    if arguments is None:
        return {}
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise ValidationError(code="E_INVALID_ARGUMENTS", message=f"arguments are not valid JSON: {e}") from e
    if not isinstance(arguments, dict):
        raise ValidationError(code="E_INVALID_ARGUMENTS", message="arguments must be a JSON object")
    return arguments


def _req_str(args: dict[str, Any], key: str) -> str:
    v = args.get(key, _MISSING)
    if v is _MISSING:
        raise ValidationError(code="E_REQUIRED_FIELD", message=f"{key} is required", field=key)
    if not isinstance(v, str):
        raise ValidationError(code="E_INVALID_TYPE", message=f"{key} must be a string", field=key)
    return v


def _opt_str(args: dict[str, Any], key: str) -> Optional[str]:
    v = args.get(key)
    if v is not None and not isinstance(v, str):
        raise ValidationError(code="E_INVALID_TYPE", message=f"{key} must be a string", field=key)
    return v


def _req_int(args: dict[str, Any], key: str) -> int:
    v = args.get(key)
    if not isinstance(v, int) or isinstance(v, bool):
        raise ValidationError(code="E_INVALID_TYPE", message=f"{key} must be an integer", field=key)
    return v


def _opt_int(args: dict[str, Any], key: str) -> Optional[int]:
    if args.get(key) is None:
        return None
    return _req_int(args, key)


def _opt_str_list(args: dict[str, Any], key: str) -> Optional[list[str]]:
    v = args.get(key)
    if v is None:
        return None
    if not isinstance(v, list) or any(not isinstance(x, str) for x in v):
        raise ValidationError(code="E_INVALID_TYPE", message=f"{key} must be an array of strings", field=key)
    return v


def _opt_datetime(args: dict[str, Any], key: str) -> Optional[datetime]:
    v = args.get(key)
    if v is None or v == "":
        return None
    try:
        return parse_datetime(v)
    except ValueError as e:
        raise ValidationError(code="E_INVALID_DATETIME", message=str(e), field=key) from e
