"""Exceptions raised while installing libraries or querying the registry."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


class InstallErrorKind(Enum):
    VALIDATION = "validation"
    INCOMPATIBILITY = "incompatibility"
    INSTALL_EXECUTION = "install_execution"
    VERIFICATION = "verification"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"

    @property
    def aborts_before_install(self) -> bool:
        """Whether this kind of failure happens before the installer is ever invoked."""
        return self in (InstallErrorKind.VALIDATION, InstallErrorKind.INCOMPATIBILITY)


class InstallError(RuntimeError):
    """Base class for every failure of an installation pipeline."""

    kind: InstallErrorKind = InstallErrorKind.UNEXPECTED

    def __init__(self, package: str, message: str) -> None:
        super().__init__(message)
        self.package: str = package
        self.message: str = message


class ValidationError(InstallError, ValueError):
    kind = InstallErrorKind.VALIDATION

    def __init__(self, package: str = "") -> None:
        super().__init__(package, "Invalid installation options: a package name is required")


class IncompatibilityError(InstallError):
    kind = InstallErrorKind.INCOMPATIBILITY

    def __init__(self, package: str, python_version: str, supported: Iterable[str] = ()) -> None:
        self.python_version: str = python_version
        self.supported: list[str] = list(supported)
        msg = f"{package} is not compatible with Python {python_version}"
        if self.supported:
            msg = f"{msg} (supported: {', '.join(self.supported)})"
        super().__init__(package, msg)


class InstallExecutionError(InstallError):
    """One or more packages of the ordered install list failed."""

    kind = InstallErrorKind.INSTALL_EXECUTION

    def __init__(self, package: str, failed: Iterable[str]) -> None:
        self.failed: list[str] = list(failed)
        super().__init__(package, f"Failed to install: {', '.join(self.failed)}")


class VerificationError(InstallError):
    kind = InstallErrorKind.VERIFICATION

    def __init__(self, package: str) -> None:
        super().__init__(package, f"Installation of {package} could not be verified")


class InstallCancelledError(InstallError):
    kind = InstallErrorKind.CANCELLED

    def __init__(self, package: str) -> None:
        super().__init__(package, f"Installation of {package} was cancelled")


class RegistryError(ValueError):
    """Raised when package metadata cannot be fetched from the registry."""
