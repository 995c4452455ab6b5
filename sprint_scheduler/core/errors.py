from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SchedulerError(Exception):
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
        loc = ":".join(parts) if parts else "<sprint>"
        return f"{loc}: {self.code}: {self.message}"


class SprintLoadError(SchedulerError):
    pass


class SprintValidationError(SchedulerError):
    pass


class CyclicDependencyError(SchedulerError):
    """The dependency graph contains a cycle; the scheduling pass is aborted."""


class UnschedulableTaskError(SchedulerError):
    """A user has no working day inside the scheduling horizon."""


class UnknownUserError(SchedulerError):
    pass


class UnknownTaskError(SchedulerError):
    pass


@dataclass(frozen=True)
class SchedulerWarning:
    """Recoverable condition. Logged and returned, never raised."""

    code: str
    message: str
    path: Optional[str] = None

    def __str__(self) -> str:
        loc = self.path or "<sprint>"
        return f"{loc}: {self.code}: {self.message}"


class NegativeRemainingWarning(SchedulerWarning):
    pass


class ManualStartWarning(SchedulerWarning):
    pass


def cycle_error(cycle: list[str], file: Optional[str] = None) -> CyclicDependencyError:
    return CyclicDependencyError(
        code="E_CYCLIC_DEPENDENCY",
        message="dependency cycle detected: " + " -> ".join(cycle),
        file=file,
        path=f"tasks.{cycle[0]}.predecessors" if cycle else None,
    )
