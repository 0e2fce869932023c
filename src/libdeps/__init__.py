"""The `libdeps` APIs."""

__version__ = "0.1.0"

from .db import RecordStore
from .errors import (
    IncompatibilityError,
    InstallCancelledError,
    InstallError,
    InstallErrorKind,
    InstallExecutionError,
    RegistryError,
    ValidationError,
    VerificationError,
)
from .events import InstallCompleted, InstallProgress, InstallResult, InstallStarted, ProgressStep
from .graph import DependencyGraph
from .installer import InstallerTool, PipInstaller
from .libdeps import APP_DIRS
from .models import (
    DependencyConflict,
    DependencyStatistics,
    InstallationRecord,
    LibrarySpec,
    RemovedEdge,
    normalize_name,
)
from .options import InstallOptions
from .orchestrator import InstallJob, PackageManager
from .registry import PackageInfo, PyPIClient, RegistryClient
from .resolver import COMMON_PACKAGES, DependencyResolver

__all__ = [
    "APP_DIRS",
    "COMMON_PACKAGES",
    "DependencyConflict",
    "DependencyGraph",
    "DependencyResolver",
    "DependencyStatistics",
    "IncompatibilityError",
    "InstallCancelledError",
    "InstallCompleted",
    "InstallError",
    "InstallErrorKind",
    "InstallExecutionError",
    "InstallJob",
    "InstallOptions",
    "InstallProgress",
    "InstallResult",
    "InstallStarted",
    "InstallationRecord",
    "InstallerTool",
    "LibrarySpec",
    "PackageInfo",
    "PackageManager",
    "PipInstaller",
    "ProgressStep",
    "PyPIClient",
    "RecordStore",
    "RegistryClient",
    "RegistryError",
    "RemovedEdge",
    "ValidationError",
    "VerificationError",
    "normalize_name",
]
