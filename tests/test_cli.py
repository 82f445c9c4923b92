import json
from datetime import datetime, timezone

import yaml
from typer.testing import CliRunner

from goal_planner.cli import app
from goal_planner.core.model import Goal, Milestone, Task
from goal_planner.core.storage.yaml_store import YamlFileStorage


runner = CliRunner()


def _run(store, *args):
    return runner.invoke(app, [*args, "--store", str(store), "--user", "alice"])


def _make(store, *args):
    r = _run(store, *args)
    assert r.exit_code == 0, r.output
    return r.stdout.strip()


def test_cli_build_goal_and_list_available(tmp_path):
    store = tmp_path / "goals.yaml"
    gid = _make(store, "create-goal", "Learn guitar", "--deadline", "2026-12-01")
    mid = _make(store, "create-milestone", gid, "Chords")
    first = _make(store, "create-task", mid, "Learn G", "--minutes", "15")
    second = _make(store, "create-task", mid, "Learn C", "--chain")

    r = _run(store, "available", gid, "--format", "json")
    assert r.exit_code == 0, r.output
    payload = json.loads(r.stdout)
    assert payload["count"] == 1
    assert payload["tasks"][0]["id"] == first
    assert payload["tasks"][0]["goal_id"] == gid

    r = _run(store, "toggle", first)
    assert r.exit_code == 0
    assert "is completed" in r.stdout

    r = _run(store, "available")
    assert r.exit_code == 0
    assert second in r.stdout
    assert first not in r.stdout

    r = _run(store, "goals")
    assert "(1/2 done)" in r.stdout


def test_cli_show_json_includes_states(tmp_path):
    store = tmp_path / "goals.yaml"
    gid = _make(store, "create-goal", "G")
    mid = _make(store, "create-milestone", gid, "M")
    a = _make(store, "create-task", mid, "A")
    b = _make(store, "create-task", mid, "B", "--dep", a)

    r = _run(store, "show", gid, "--format", "json")
    assert r.exit_code == 0, r.output
    tasks = json.loads(r.stdout)["milestones"][0]["tasks"]
    assert {t["id"]: t["state"] for t in tasks} == {a: "available", b: "blocked"}

    r = _run(store, "show", gid)
    assert r.exit_code == 0, r.output
    assert "blocked" in r.stdout


def test_cli_delete_task_repairs_dependents(tmp_path):
    store = tmp_path / "goals.yaml"
    gid = _make(store, "create-goal", "G")
    mid = _make(store, "create-milestone", gid, "M")
    a = _make(store, "create-task", mid, "A")
    b = _make(store, "create-task", mid, "B", "--chain")

    r = _run(store, "delete-task", a)
    assert r.exit_code == 0
    doc = yaml.safe_load(store.read_text(encoding="utf-8"))
    assert [(t["id"], t["depends_on"]) for t in doc["tasks"]] == [(b, [])]

    assert _run(store, "delete-milestone", mid).exit_code == 0
    assert _run(store, "delete-goal", gid).exit_code == 0
    assert "No goals yet." in _run(store, "goals").stdout


def test_cli_validation_errors_exit_2(tmp_path):
    store = tmp_path / "goals.yaml"
    r = _run(store, "create-goal", "   ")
    assert r.exit_code == 2
    assert "E_REQUIRED_FIELD" in r.output

    r = _run(store, "toggle", "missing")
    assert r.exit_code == 2
    assert "E_TASK_NOT_FOUND" in r.output

    r = _run(store, "available", "--format", "xml")
    assert r.exit_code == 2
    assert "E_UNKNOWN_FORMAT" in r.output

    r = _run(store, "create-goal", "G", "--deadline", "someday")
    assert r.exit_code == 2
    assert "E_INVALID_DATETIME" in r.output


def test_cli_cycle_rejected(tmp_path):
    store = tmp_path / "goals.yaml"
    gid = _make(store, "create-goal", "G")
    mid = _make(store, "create-milestone", gid, "M")
    a = _make(store, "create-task", mid, "A")
    b = _make(store, "create-task", mid, "B", "--dep", a)

    r = _run(store, "tool", "edit_task", json.dumps({"task_id": a, "depends_on": [b]}))
    assert r.exit_code == 2
    assert "E_DEPENDENCY_CYCLE" in r.output


def test_cli_corrupt_store_exits_1(tmp_path):
    store = tmp_path / "goals.yaml"
    store.write_text("just a string\n", encoding="utf-8")
    r = _run(store, "goals")
    assert r.exit_code == 1
    assert "E_INVALID_TOP_LEVEL" in r.output


def test_cli_check_reports_cycles_and_dangling(tmp_path):
    store = tmp_path / "goals.yaml"
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    s = YamlFileStorage(store)
    s.insert_goal("alice", Goal(id="g", user_id="alice", title="G", created_at=now, updated_at=now))
    s.insert_milestone("alice", Milestone(id="m", goal_id="g", title="M", order_index=0, created_at=now, updated_at=now))
    for tid, deps in [("a", ("b",)), ("b", ("a",)), ("c", ("ghost",))]:
        s.insert_task(
            "alice",
            Task(id=tid, milestone_id="m", title=tid, order_index=0, created_at=now, updated_at=now, depends_on=deps),
        )

    r = _run(store, "check")
    assert r.exit_code == 2
    assert "E_DEPENDENCY_CYCLE" in r.output
    assert "g:c: E_DANGLING_DEPENDENCY: ghost" in r.output


def test_cli_check_ok_on_empty_store(tmp_path):
    r = _run(tmp_path / "goals.yaml", "check")
    assert r.exit_code == 0
    assert "OK: 0 goals checked" in r.stdout


def test_cli_tools_listing():
    r = runner.invoke(app, ["tools", "--format", "json"])
    assert r.exit_code == 0
    names = [d["name"] for d in json.loads(r.stdout)]
    assert "create_goal_plan" in names

    r = runner.invoke(app, ["tools"])
    assert "- view_goal:" in r.stdout


def test_cli_import_plan(tmp_path):
    store = tmp_path / "goals.yaml"
    plan = tmp_path / "plan.yaml"
    plan.write_text(
        yaml.safe_dump(
            {
                "goal_title": "Run 10k",
                "milestones": [
                    {
                        "title": "Base",
                        "tasks": [
                            {"id": 1, "title": "Run 2k", "order": 0, "depends_on": []},
                            {"id": 2, "title": "Run 5k", "order": 1, "depends_on": [1]},
                        ],
                    }
                ],
            }
        ),
        encoding="utf-8",
    )
    r = _run(store, "import-plan", str(plan))
    assert r.exit_code == 0, r.output
    assert "(milestones=1, tasks=2)" in r.stdout

    r = _run(store, "available")
    assert "Run 2k" in r.stdout
    assert "Run 5k" not in r.stdout


def test_cli_import_plan_unsupported_file(tmp_path):
    plan = tmp_path / "plan.txt"
    plan.write_text("goal_title: nope\n", encoding="utf-8")
    r = _run(tmp_path / "goals.yaml", "import-plan", str(plan))
    assert r.exit_code == 2
    assert "E_UNSUPPORTED_FORMAT" in r.output


def test_cli_settings_from_config_file(tmp_path, monkeypatch):
    store = tmp_path / "configured.yaml"
    cfg = tmp_path / "planner.yaml"
    cfg.write_text(f"store_path: {store}\nuser_id: bob\n", encoding="utf-8")
    monkeypatch.delenv("GOAL_PLANNER_STORE", raising=False)
    monkeypatch.delenv("GOAL_PLANNER_USER", raising=False)

    r = runner.invoke(app, ["create-goal", "Configured", "--config", str(cfg)])
    assert r.exit_code == 0, r.output
    doc = yaml.safe_load(store.read_text(encoding="utf-8"))
    assert doc["goals"][0]["user_id"] == "bob"
