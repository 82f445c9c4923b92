import json

from goal_planner.core.ai.dispatcher import ToolDispatcher
from goal_planner.core.ai.tools import TOOL_NAMES, tool_definition, tool_definitions
from goal_planner.core.service.mutations import MutationService
from goal_planner.core.storage.memory import InMemoryStorage


def _dispatcher(on_change=None):
    svc = MutationService(InMemoryStorage(), user_id="alice")
    return svc, ToolDispatcher(svc, on_change=on_change)


def _ok(result):
    assert result.ok, result.error
    return result.payload


def test_catalogue_matches_handlers():
    _, d = _dispatcher()
    assert sorted(TOOL_NAMES) == d.tool_names
    for definition in tool_definitions():
        assert definition["input_schema"]["type"] == "object"
    assert tool_definition("create_task")["name"] == "create_task"


def test_tool_definitions_are_copies():
    defs = tool_definitions()
    defs[0]["name"] = "mutated"
    assert tool_definitions()[0]["name"] != "mutated"


def test_unknown_tool():
    _, d = _dispatcher()
    r = d.dispatch("launch_rocket", {})
    assert not r.ok
    assert r.error_kind == "validation"
    assert "E_UNKNOWN_TOOL" in r.error


def test_create_goal_milestone_task_and_view():
    changes = []
    _, d = _dispatcher(on_change=changes.append)

    goal_id = _ok(d.dispatch("create_goal", {"title": "Learn piano", "deadline": "2026-09-01"}))["goal_id"]
    mid = _ok(d.dispatch("create_milestone", {"goal_id": goal_id, "title": "Scales"}))["milestone_id"]
    first = _ok(d.dispatch("create_task", {"milestone_id": mid, "title": "C major"}))["task"]
    second = _ok(
        d.dispatch(
            "create_task",
            {"milestone_id": mid, "title": "G major", "depends_on": [first["id"]], "estimated_minutes": 20},
        )
    )["task"]
    assert second["depends_on"] == [first["id"]]
    assert second["estimated_minutes"] == 20

    view = _ok(d.dispatch("view_goal", {"goal_id": goal_id}))
    assert view["goal"]["deadline"].startswith("2026-09-01")
    assert view["progress"] == {"completed": 0, "total": 2}
    states = {t["id"]: t["state"] for t in view["milestones"][0]["tasks"]}
    assert states == {first["id"]: "available", second["id"]: "blocked"}
    assert view["available_task_ids"] == [first["id"]]

    # view_goal is read-only
    assert changes == [goal_id] * 4


def test_assistant_created_tasks_are_not_chained():
    _, d = _dispatcher()
    goal_id = _ok(d.dispatch("create_goal", {"title": "G"}))["goal_id"]
    mid = _ok(d.dispatch("create_milestone", {"goal_id": goal_id, "title": "M"}))["milestone_id"]
    _ok(d.dispatch("create_task", {"milestone_id": mid, "title": "A"}))
    b = _ok(d.dispatch("create_task", {"milestone_id": mid, "title": "B"}))["task"]
    assert b["depends_on"] == []


def test_arguments_may_be_a_json_string():
    _, d = _dispatcher()
    r = d.dispatch("create_goal", json.dumps({"title": "From JSON"}))
    assert _ok(r)["goal"]["title"] == "From JSON"

    bad = d.dispatch("create_goal", "{not json")
    assert not bad.ok
    assert "E_INVALID_ARGUMENTS" in bad.error


def test_edit_changes_only_given_fields():
    _, d = _dispatcher()
    g = _ok(d.dispatch("create_goal", {"title": "Old", "description": "keep me"}))["goal"]
    edited = _ok(d.dispatch("edit_goal", {"goal_id": g["id"], "title": "New"}))["goal"]
    assert edited["title"] == "New"
    assert edited["description"] == "keep me"

    cleared = _ok(d.dispatch("edit_goal", {"goal_id": g["id"], "description": None}))["goal"]
    assert cleared["description"] is None


def test_edit_task_cannot_set_completion():
    svc, d = _dispatcher()
    g = svc.create_goal("G")
    m = svc.create_milestone(g.id, "M")
    t = svc.create_task(m.id, "T")
    r = d.dispatch("edit_task", {"task_id": t.id, "is_completed": True})
    assert not r.ok
    assert "E_IMMUTABLE_FIELD" in r.error
    assert not svc.get_task(t.id).is_completed


def test_edit_task_cycle_reports_graph_integrity():
    svc, d = _dispatcher()
    g = svc.create_goal("G")
    m = svc.create_milestone(g.id, "M")
    a = svc.create_task(m.id, "A")
    b = svc.create_task(m.id, "B", depends_on=[a.id])
    r = d.dispatch("edit_task", {"task_id": a.id, "depends_on": [b.id]})
    assert not r.ok
    assert r.error_kind == "graph_integrity"
    assert r.to_content().startswith("Error (graph_integrity): ")


def test_delete_tools_report_ids_and_repair():
    svc, d = _dispatcher()
    g = svc.create_goal("G")
    m = svc.create_milestone(g.id, "M")
    a = svc.create_task(m.id, "A")
    b = svc.create_task(m.id, "B", depends_on=[a.id])

    assert _ok(d.dispatch("delete_task", {"task_id": a.id})) == {"deleted_task_id": a.id}
    assert svc.get_task(b.id).depends_on == ()
    assert _ok(d.dispatch("delete_milestone", {"milestone_id": m.id})) == {"deleted_milestone_id": m.id}
    assert _ok(d.dispatch("delete_goal", {"goal_id": g.id})) == {"deleted_goal_id": g.id}
    assert svc.list_goals() == []


def test_not_found_and_type_errors():
    _, d = _dispatcher()
    r = d.dispatch("view_goal", {"goal_id": "missing"})
    assert r.error_kind == "not_found"

    r = d.dispatch("create_goal", {"title": 42})
    assert r.error_kind == "validation"
    assert "E_INVALID_TYPE" in r.error

    r = d.dispatch("create_goal", {})
    assert "E_REQUIRED_FIELD" in r.error

    r = d.dispatch("create_goal", {"title": "G", "deadline": "next tuesday"})
    assert "E_INVALID_DATETIME" in r.error


def test_listener_failure_does_not_fail_the_call():
    def explode(goal_id):
        raise RuntimeError("ui gone")

    _, d = _dispatcher(on_change=explode)
    assert d.dispatch("create_goal", {"title": "Still works"}).ok


def test_create_goal_plan_tool():
    svc, d = _dispatcher()
    payload = _ok(
        d.dispatch(
            "create_goal_plan",
            {
                "goal_title": "Ship app",
                "milestones": [
                    {
                        "id": 1,
                        "title": "Build",
                        "order": 0,
                        "tasks": [
                            {"id": 1, "title": "Write code", "order": 0, "depends_on": []},
                            {"id": 2, "title": "Test code", "order": 1, "depends_on": [1]},
                        ],
                    }
                ],
            },
        )
    )
    assert payload["created_goal"] is True
    assert set(payload["task_ids"]) == {"1", "2"}
    tested = svc.get_task(payload["task_ids"]["2"])
    assert tested.depends_on == (payload["task_ids"]["1"],)


def _chain_plan(n, *, closed=False):
    tasks = [
        {"id": i, "title": f"Step {i}", "order": i, "depends_on": [i - 1] if i else []} for i in range(n)
    ]
    if closed:
        tasks[0]["depends_on"] = [n - 1]
    return {"goal_title": "Long haul", "milestones": [{"title": "All", "tasks": tasks}]}


def test_long_cyclic_plan_comes_back_as_tool_error():
    svc, d = _dispatcher()
    r = d.dispatch("create_goal_plan", _chain_plan(1500, closed=True))
    assert not r.ok
    assert r.error_kind == "validation"
    assert "E_DEPENDENCY_CYCLE" in r.error
    assert svc.list_goals() == []


def test_long_acyclic_plan_is_applied():
    svc, d = _dispatcher()
    payload = _ok(d.dispatch("create_goal_plan", _chain_plan(1200)))
    last = svc.get_task(payload["task_ids"]["1199"])
    assert last.depends_on == (payload["task_ids"]["1198"],)
    assert [t.id for t in svc.available_tasks(payload["goal_id"])] == [payload["task_ids"]["0"]]
