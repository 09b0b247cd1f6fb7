from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TaskGraphError(Exception):
    """Base error envelope. Prefer returning/printing these rather than raising raw exceptions."""

    code: str
    message: str
    file: Optional[str] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.path:
            parts.append(self.path)
        loc = ":".join(parts) if parts else "<project>"
        return f"{loc}: {self.code}: {self.message}"


class ValidationError(TaskGraphError):
    """Malformed input. Never retried."""


class TaskNotFoundError(ValidationError):
    pass


class AmbiguousIdError(ValidationError):
    pass


@dataclass(frozen=True)
class WirePreconditionError(ValidationError):
    """A wire-insert precondition failed; ``precondition`` names which one."""

    precondition: str = ""


@dataclass(frozen=True)
class CircularDependencyError(TaskGraphError):
    cycle: tuple[str, ...] = ()


@dataclass(frozen=True)
class FileOperationError(TaskGraphError):
    """Read/write/rename failure. The underlying OSError is chained as __cause__."""

    attempts: int = 1


class ProjectNotFoundError(FileOperationError):
    pass


class ConfigError(ValidationError):
    pass
