from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PlannerError(Exception):
    """Base error envelope shared by the service, the tool dispatcher and the CLI."""

    code: str
    message: str
    entity: Optional[str] = None
    field: Optional[str] = None

    def __str__(self) -> str:
        parts: list[str] = []
        if self.entity:
            parts.append(self.entity)
        if self.field:
            parts.append(self.field)
        loc = ":".join(parts) if parts else "<planner>"
        return f"{loc}: {self.code}: {self.message}"


class ValidationError(PlannerError):
    pass


class NotFoundError(PlannerError):
    pass


class StorageError(PlannerError):
    pass


class GraphIntegrityError(ValidationError):
    """Raised when a write would introduce a self-dependency or a cycle."""


class PlanImportError(ValidationError):
    pass


class ConfigError(PlannerError):
    pass
