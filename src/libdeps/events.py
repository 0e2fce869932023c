"""Events emitted while an installation pipeline runs.

Every pipeline run emits exactly one `InstallStarted`, zero or more
`InstallProgress` events with non-decreasing percentages, and exactly one
`InstallCompleted` as its last event.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .errors import InstallErrorKind


class ProgressStep(Enum):
    COMPATIBILITY_CHECK = "compatibility_check"
    DEPENDENCY_FETCH = "dependency_fetch"
    PIPELINE_ASSEMBLED = "pipeline_assembled"
    INSTALLING = "installing"
    VERIFYING = "verifying"


@dataclass(frozen=True)
class InstallStarted:
    package: str


@dataclass(frozen=True)
class InstallProgress:
    package: str
    percent: int
    step: ProgressStep
    detail: str = ""

    def __str__(self) -> str:
        if self.detail:
            return f"[{self.percent:3d}%] {self.step.value}: {self.detail}"
        return f"[{self.percent:3d}%] {self.step.value}"


@dataclass(frozen=True)
class InstallCompleted:
    package: str
    success: bool
    message: str
    error: InstallErrorKind | None = None
    failed_packages: tuple[str, ...] = ()

    @property
    def percent(self) -> int:
        return 100


@dataclass(frozen=True)
class InstallResult:
    """Outcome of one installation pipeline run."""

    package: str
    success: bool
    message: str
    error: InstallErrorKind | None = None
    failed_packages: tuple[str, ...] = ()
    installed_packages: tuple[str, ...] = ()

    @classmethod
    def from_event(cls, event: InstallCompleted, installed: tuple[str, ...] = ()) -> InstallResult:
        return cls(
            package=event.package,
            success=event.success,
            message=event.message,
            error=event.error,
            failed_packages=event.failed_packages,
            installed_packages=installed,
        )

    def to_obj(self) -> dict[str, Any]:
        return {
            "package": self.package,
            "success": self.success,
            "message": self.message,
            "error": self.error.value if self.error is not None else None,
            "failed_packages": list(self.failed_packages),
            "installed_packages": list(self.installed_packages),
        }

    def __bool__(self) -> bool:
        return self.success


InstallEvent = InstallStarted | InstallProgress | InstallCompleted
