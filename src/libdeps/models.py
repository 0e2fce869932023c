"""Core data models for library dependency management."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from semantic_version import SimpleSpec

if TYPE_CHECKING:
    from collections.abc import Iterable

# Module-level constants to avoid function calls in defaults
_WILDCARD_SPEC = SimpleSpec("*")

DEFAULT_PYTHON_VERSIONS: tuple[str, ...] = ("3.8", "3.9", "3.10", "3.11", "3.12")

_MARKER_SEPARATOR = ";"
_VERSION_OPERATORS = re.compile(r"[<>=!~].*$")
_EXTRAS = re.compile(r"\[([^\]]*)\]")
_PARENTHESIZED = re.compile(r"\(([^)]*)\)")


def normalize_name(raw: str | None) -> str:
    """Reduce a raw requirement string to the bare, lowercase library name.

    Environment markers, extras, parenthesized constraints and version operators
    (and everything following them) are removed:

        >>> normalize_name("NumPy>=1.18.5")
        'numpy'
        >>> normalize_name("urllib3[socks]")
        'urllib3'
        >>> normalize_name("python-dateutil (>=2.8.1) ; python_version >= '3.6'")
        'python-dateutil'

    Anything that is not a non-empty string yields ``""``.
    """
    if not raw or not isinstance(raw, str):
        return ""
    text = raw.split(_MARKER_SEPARATOR, 1)[0]
    text = _EXTRAS.sub("", text)
    text = _PARENTHESIZED.sub("", text)
    text = _VERSION_OPERATORS.sub("", text)
    text = text.replace("[", "").replace("]", "").replace("(", "").replace(")", "")
    parts = text.split()
    if not parts:
        return ""
    return parts[0].strip().lower()


@dataclass(frozen=True)
class LibrarySpec:
    """A requirement parsed once at the system boundary.

    The graph is keyed purely by `name`; the constraint is kept for display only.
    """

    name: str
    version_constraint: str = ""
    extras: tuple[str, ...] = ()
    marker: str = ""

    @classmethod
    def parse(cls, requirement: str | None) -> LibrarySpec | None:
        """Parse a requirement string such as ``"idna>=2.5,<3"``.

        Args:
            requirement: Raw requirement text

        Returns:
            The parsed spec, or None if no library name could be extracted

        """
        name = normalize_name(requirement)
        if not name or requirement is None:
            return None
        head, _, marker = requirement.partition(_MARKER_SEPARATOR)
        extras: tuple[str, ...] = ()
        extras_match = _EXTRAS.search(head)
        if extras_match:
            extras = tuple(e.strip().lower() for e in extras_match.group(1).split(",") if e.strip())
            head = _EXTRAS.sub("", head)
        parenthesized = _PARENTHESIZED.search(head)
        if parenthesized:
            constraint = parenthesized.group(1)
        else:
            operator = re.search(r"[<>=!~]", head)
            constraint = head[operator.start() :] if operator else ""
        return cls(
            name=name,
            version_constraint="".join(constraint.split()),
            extras=extras,
            marker=marker.strip(),
        )

    @property
    def semantic_version(self) -> SimpleSpec:
        """The constraint as a `SimpleSpec`, or the wildcard if it cannot be expressed as one."""
        if not self.version_constraint:
            return _WILDCARD_SPEC
        try:
            return SimpleSpec(self.version_constraint)
        except ValueError:
            return _WILDCARD_SPEC

    def __str__(self) -> str:
        extras = f"[{','.join(self.extras)}]" if self.extras else ""
        return f"{self.name}{extras}{self.version_constraint}"


@dataclass(frozen=True)
class DependencyConflict:
    """A dependency that two or more libraries require directly.

    Only co-requirement by name is detected; the declared constraints are carried
    along for display and are never compared.
    """

    dependency: str
    libraries: frozenset[str]
    constraints: dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    def to_obj(self) -> dict[str, Any]:
        return {
            "dependency": self.dependency,
            "libraries": sorted(self.libraries),
            "constraints": dict(sorted(self.constraints.items())),
        }

    def __str__(self) -> str:
        return f"{self.dependency} required by: {', '.join(sorted(self.libraries))}"


@dataclass(frozen=True, order=True)
class RemovedEdge:
    """A dependency edge discarded while breaking a cycle."""

    library: str
    dependency: str

    def __str__(self) -> str:
        return f"{self.library} -> {self.dependency}"


@dataclass(frozen=True)
class DependencyStatistics:
    total_libraries: int
    total_dependencies: int
    libraries_with_no_dependencies: int
    most_dependent_library_count: int
    most_dependent_library_name: str

    @property
    def average_dependencies(self) -> float:
        if self.total_libraries == 0:
            return 0.0
        return self.total_dependencies / self.total_libraries

    def to_obj(self) -> dict[str, Any]:
        return {
            "total_libraries": self.total_libraries,
            "total_dependencies": self.total_dependencies,
            "libraries_with_no_dependencies": self.libraries_with_no_dependencies,
            "most_dependent_library": self.most_dependent_library_name,
            "most_dependent_library_count": self.most_dependent_library_count,
            "average_dependencies": round(self.average_dependencies, 2),
        }

    def __str__(self) -> str:
        return (
            f"Total libraries: {self.total_libraries}, total dependencies: {self.total_dependencies}, "
            f"average dependencies: {self.average_dependencies:.2f}"
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _from_epoch_ms(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


@dataclass
class InstallationRecord:
    """Metadata describing a currently-installed library."""

    name: str
    description: str = "Installed library"
    version: str = "0.0.0"
    author: str = "Unknown"
    author_email: str = ""
    license: str = "Unknown"
    home_page: str = ""
    pypi_url: str = ""
    dependencies: list[str] = field(default_factory=list)
    classifiers: list[str] = field(default_factory=list)
    python_versions: list[str] = field(default_factory=lambda: list(DEFAULT_PYTHON_VERSIONS))
    download_count: int = 0
    last_updated: datetime = field(default_factory=_now)
    is_updated: bool = False

    @property
    def has_update(self) -> bool:
        return self.is_updated

    def touch(self) -> InstallationRecord:
        """Mark the record as refreshed now.

        Returns:
            Self for method chaining

        """
        self.last_updated = _now()
        return self

    def to_obj(self) -> dict[str, Any]:
        """Convert the record to its persisted JSON representation."""
        return {
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "author": self.author,
            "author_email": self.author_email,
            "license": self.license,
            "home_page": self.home_page,
            "pypi_url": self.pypi_url,
            "dependencies": list(self.dependencies),
            "classifiers": list(self.classifiers),
            "python_versions": list(self.python_versions),
            "download_count": self.download_count,
            "last_updated": _to_epoch_ms(self.last_updated),
            "is_updated": self.is_updated,
        }

    @classmethod
    def from_obj(cls, obj: dict[str, Any]) -> InstallationRecord:
        """Build a record from its persisted JSON representation.

        Only ``name`` is required; every other key falls back to its default.
        """
        last_updated = obj.get("last_updated")
        return cls(
            name=obj["name"],
            description=obj.get("description") or "Installed library",
            version=obj.get("version") or "0.0.0",
            author=obj.get("author") or "Unknown",
            author_email=obj.get("author_email") or "",
            license=obj.get("license") or "Unknown",
            home_page=obj.get("home_page") or "",
            pypi_url=obj.get("pypi_url") or "",
            dependencies=list(obj.get("dependencies") or ()),
            classifiers=list(obj.get("classifiers") or ()),
            python_versions=list(obj.get("python_versions") or DEFAULT_PYTHON_VERSIONS),
            download_count=int(obj.get("download_count") or 0),
            last_updated=_from_epoch_ms(last_updated) if last_updated is not None else _now(),
            is_updated=bool(obj.get("is_updated", False)),
        )

    def dumps(self) -> str:
        return json.dumps(self.to_obj())


def records_to_json(records: Iterable[InstallationRecord]) -> str:
    """Serialize records as the JSON array stored under a single preference key."""
    return json.dumps([record.to_obj() for record in records])


def records_from_json(text: str | None) -> list[InstallationRecord]:
    if not text:
        return []
    return [InstallationRecord.from_obj(obj) for obj in json.loads(text) if isinstance(obj, dict) and obj.get("name")]
