from __future__ import annotations

from copy import deepcopy
from typing import Any


# Argument names match the stable record field names in core.model, so a
# payload returned by view_goal can be fed back into edit_* calls unchanged.

_ID = {"type": "string", "description": "Entity id as returned by a previous tool call"}
_DATETIME = {
    "type": ["string", "null"],
    "description": "ISO 8601 date or date-time, e.g. 2026-03-01 or 2026-03-01T18:00:00Z",
}
_DEPENDS_ON = {
    "type": "array",
    "items": {"type": "string"},
    "description": "Ids of tasks in the same goal that must be completed first",
}


PLAN_TASK_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": "integer", "description": "Plan-local task number"},
        "title": {"type": "string", "description": "Actionable task title starting with a verb"},
        "description": {"type": "string"},
        "estimated_effort_minutes": {"type": "integer", "description": "15-60 minutes per task"},
        "order": {"type": "integer"},
        "depends_on": {
            "type": "array",
            "items": {"type": "integer"},
            "description": "Plan-local ids of tasks this task depends on",
        },
    },
    "required": ["id", "title", "order", "depends_on"],
}

PLAN_MILESTONE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": "integer"},
        "title": {"type": "string"},
        "description": {"type": "string"},
        "order": {"type": "integer"},
        "tasks": {"type": "array", "items": PLAN_TASK_SCHEMA},
    },
    "required": ["id", "title", "order", "tasks"],
}


TOOLS: list[dict[str, Any]] = [
    {
        "name": "create_goal",
        "description": "Create a new goal. Returns the new goal id for use in later calls.",
        "input_schema": {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "description": {"type": "string"},
                "deadline": _DATETIME,
            },
            "required": ["title"],
        },
    },
    {
        "name": "edit_goal",
        "description": "Update a goal. Only the fields you pass are changed.",
        "input_schema": {
            "type": "object",
            "properties": {
                "goal_id": _ID,
                "title": {"type": "string"},
                "description": {"type": ["string", "null"]},
                "deadline": _DATETIME,
            },
            "required": ["goal_id"],
        },
    },
    {
        "name": "delete_goal",
        "description": "Permanently delete a goal with all of its milestones and tasks.",
        "input_schema": {
            "type": "object",
            "properties": {"goal_id": _ID},
            "required": ["goal_id"],
        },
    },
    {
        "name": "create_milestone",
        "description": "Append a milestone to a goal. Returns the new milestone id.",
        "input_schema": {
            "type": "object",
            "properties": {
                "goal_id": _ID,
                "title": {"type": "string"},
                "description": {"type": "string"},
            },
            "required": ["goal_id", "title"],
        },
    },
    {
        "name": "edit_milestone",
        "description": "Update a milestone's title, description or position.",
        "input_schema": {
            "type": "object",
            "properties": {
                "milestone_id": _ID,
                "title": {"type": "string"},
                "description": {"type": "string"},
                "order_index": {"type": "integer"},
            },
            "required": ["milestone_id"],
        },
    },
    {
        "name": "delete_milestone",
        "description": "Delete a milestone and its tasks. Other tasks lose dependencies on them.",
        "input_schema": {
            "type": "object",
            "properties": {"milestone_id": _ID},
            "required": ["milestone_id"],
        },
    },
    {
        "name": "create_task",
        "description": (
            "Append a micro-task (15-60 minutes) to a milestone. depends_on lists task ids "
            "that must be completed first; pass [] for an immediately available task."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "milestone_id": _ID,
                "title": {"type": "string"},
                "description": {"type": "string"},
                "depends_on": _DEPENDS_ON,
                "deadline": _DATETIME,
                "estimated_minutes": {"type": ["integer", "null"]},
            },
            "required": ["milestone_id", "title"],
        },
    },
    {
        "name": "edit_task",
        "description": (
            "Update a task. Only the fields you pass are changed; depends_on replaces the "
            "whole dependency list. Completion cannot be changed here."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "task_id": _ID,
                "title": {"type": "string"},
                "description": {"type": "string"},
                "depends_on": _DEPENDS_ON,
                "milestone_id": _ID,
                "order_index": {"type": "integer"},
                "deadline": _DATETIME,
                "estimated_minutes": {"type": ["integer", "null"]},
            },
            "required": ["task_id"],
        },
    },
    {
        "name": "delete_task",
        "description": "Delete a task. Tasks depending on it simply lose that dependency.",
        "input_schema": {
            "type": "object",
            "properties": {"task_id": _ID},
            "required": ["task_id"],
        },
    },
    {
        "name": "view_goal",
        "description": (
            "Read the full structure of a goal: milestones, tasks, dependencies, and which "
            "tasks are completed, available or blocked."
        ),
        "input_schema": {
            "type": "object",
            "properties": {"goal_id": _ID},
            "required": ["goal_id"],
        },
    },
    {
        "name": "create_goal_plan",
        "description": (
            "Create a complete goal from a plan: milestones and micro-tasks with dependencies "
            "expressed as plan-local integer ids. Pass goal_id to add the milestones to an "
            "existing goal instead."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "goal_title": {"type": "string"},
                "goal_description": {"type": "string"},
                "goal_id": _ID,
                "milestones": {"type": "array", "items": PLAN_MILESTONE_SCHEMA},
            },
            "required": ["milestones"],
        },
    },
]


TOOL_NAMES: tuple[str, ...] = tuple(t["name"] for t in TOOLS)


def tool_definitions() -> list[dict[str, Any]]:
    return deepcopy(TOOLS)


def tool_definition(name: str) -> dict[str, Any]:
    for t in TOOLS:
        if t["name"] == name:
            return deepcopy(t)
    raise KeyError(name)
