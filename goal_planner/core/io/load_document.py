from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from goal_planner.core.errors import PlanImportError


def load_document(path: str) -> dict[str, Any]:
    """Load a YAML/JSON document (a goal plan, or tool arguments).

    Does not coerce types; the plan contract owns shape checking.
    """

    p = Path(path)
    if not p.exists():
        raise PlanImportError(
            code="E_FILE_NOT_FOUND",
            message="file does not exist",
            entity=str(p),
        )

    suffix = p.suffix.lower()
    try:
        raw_text = p.read_text(encoding="utf-8")
    except OSError as e:  # pragma: no cover
        raise PlanImportError(code="E_FILE_READ", message=str(e), entity=str(p)) from e

    if suffix not in {".yaml", ".yml", ".json"}:
        raise PlanImportError(
            code="E_UNSUPPORTED_FORMAT",
            message="supported formats are .yaml/.yml and .json",
            entity=str(p),
        )

    try:
        if suffix == ".json":
            data = json.loads(raw_text)
        else:
            data = yaml.safe_load(raw_text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        code = "E_JSON_PARSE" if suffix == ".json" else "E_YAML_PARSE"
        raise PlanImportError(code=code, message=str(e), entity=str(p)) from e

    if not isinstance(data, dict):
        raise PlanImportError(
            code="E_INVALID_TOP_LEVEL",
            message="top-level document must be a mapping/object",
            entity=str(p),
        )
    return data
