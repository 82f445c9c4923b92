from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from goal_planner.core.errors import StorageError
from goal_planner.core.model import (
    goal_from_record,
    milestone_from_record,
    task_from_record,
    to_record,
)
from goal_planner.core.storage.memory import InMemoryStorage

logger = logging.getLogger(__name__)

STORE_SCHEMA_VERSION = "1"


class YamlFileStorage(InMemoryStorage):
    """Storage persisted as one YAML document.

    Layout:
      schema_version: "1"
      goals: [...]
      milestones: [...]
      tasks: [...]

    The whole document is rewritten through a temp file + rename when the
    outermost batch commits, so readers never see half a cascade.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            raw_text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(code="E_STORE_READ", message=str(e), entity=str(self.path)) from e

        try:
            data = yaml.safe_load(raw_text)
        except yaml.YAMLError as e:
            raise StorageError(code="E_YAML_PARSE", message=str(e), entity=str(self.path)) from e

        if data is None:
            return
        if not isinstance(data, dict):
            raise StorageError(
                code="E_INVALID_TOP_LEVEL",
                message="top-level document must be a mapping",
                entity=str(self.path),
            )

        try:
            for raw in _records(data, "goals"):
                g = goal_from_record(raw)
                self._goals[g.id] = g
            for raw in _records(data, "milestones"):
                m = milestone_from_record(raw)
                self._milestones[m.id] = m
            for raw in _records(data, "tasks"):
                t = task_from_record(raw)
                self._tasks[t.id] = t
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(
                code="E_STORE_CORRUPT",
                message=f"invalid record: {e}",
                entity=str(self.path),
            ) from e

        logger.debug(
            "loaded %s goals, %s milestones, %s tasks from %s",
            len(self._goals),
            len(self._milestones),
            len(self._tasks),
            self.path,
        )

    def _commit(self) -> None:
        doc: dict[str, Any] = {
            "schema_version": STORE_SCHEMA_VERSION,
            "goals": [to_record(g) for g in self._goals.values()],
            "milestones": [to_record(m) for m in self._milestones.values()],
            "tasks": [to_record(t) for t in self._tasks.values()],
        }
        try:
            if str(self.path.parent) not in (".", ""):
                self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    yaml.safe_dump(doc, f, sort_keys=False, default_flow_style=False, allow_unicode=True)
                os.replace(tmp, self.path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as e:
            raise StorageError(code="E_STORE_WRITE", message=str(e), entity=str(self.path)) from e


def _records(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    items = data.get(key) or []
    if not isinstance(items, list) or any(not isinstance(x, dict) for x in items):
        raise StorageError(code="E_STORE_CORRUPT", message=f"{key} must be a list of mappings")
    return items
