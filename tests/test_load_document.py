from goal_planner.core.errors import PlanImportError
from goal_planner.core.io.load_document import load_document


def test_load_json_success(tmp_path):
    p = tmp_path / "plan.json"
    p.write_text('{"goal_title": "G", "milestones": []}', encoding="utf-8")
    doc = load_document(str(p))
    assert doc["goal_title"] == "G"
    assert doc["milestones"] == []


def test_load_missing_file(tmp_path):
    try:
        load_document(str(tmp_path / "does-not-exist.yaml"))
        assert False, "expected PlanImportError"
    except PlanImportError as e:
        assert e.code == "E_FILE_NOT_FOUND"


def test_load_bad_yaml(tmp_path):
    p = tmp_path / "plan.yml"
    p.write_text("milestones: [unclosed\n", encoding="utf-8")
    try:
        load_document(str(p))
        assert False, "expected PlanImportError"
    except PlanImportError as e:
        assert e.code == "E_YAML_PARSE"


def test_load_non_mapping(tmp_path):
    p = tmp_path / "plan.json"
    p.write_text("[1, 2]", encoding="utf-8")
    try:
        load_document(str(p))
        assert False, "expected PlanImportError"
    except PlanImportError as e:
        assert e.code == "E_INVALID_TOP_LEVEL"
