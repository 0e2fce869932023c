"""Clients for package registries."""

from __future__ import annotations

import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from requests import RequestException, Session

from .errors import RegistryError
from .models import DEFAULT_PYTHON_VERSIONS, InstallationRecord, normalize_name

logger = logging.getLogger(__name__)

PYPI_URL = "https://pypi.org/pypi"
DEFAULT_CACHE_TTL = 24 * 60 * 60
DEFAULT_TIMEOUT = 30

_PYTHON_CLASSIFIER = "Programming Language :: Python ::"
_PYTHON_VERSION = re.compile(r"^\d+(\.\d+)*$")
_EXTRA_MARKER = re.compile(r"\bextra\s*==")


def python_versions_from_classifiers(classifiers: list[str]) -> list[str]:
    """Extract interpreter versions from trove classifiers.

        >>> python_versions_from_classifiers(["Programming Language :: Python :: 3.11", "License :: OSI Approved"])
        ['3.11']

    Falls back to `DEFAULT_PYTHON_VERSIONS` when no version classifier is present.
    """
    versions: list[str] = []
    for classifier in classifiers:
        if not classifier.startswith(_PYTHON_CLASSIFIER):
            continue
        parts = [part.strip() for part in classifier.split("::")]
        if len(parts) >= 3 and _PYTHON_VERSION.match(parts[2]) and parts[2] not in versions:
            versions.append(parts[2])
    return versions or list(DEFAULT_PYTHON_VERSIONS)


def is_extra_requirement(requirement: str) -> bool:
    """Whether a ``Requires-Dist`` entry only applies when an optional extra is requested."""
    _, _, marker = requirement.partition(";")
    return bool(_EXTRA_MARKER.search(marker))


@dataclass(frozen=True)
class PackageInfo:
    """Registry metadata for the latest release of a package."""

    name: str
    version: str = "0.0.0"
    summary: str = ""
    author: str = ""
    author_email: str = ""
    license: str = ""
    home_page: str = ""
    pypi_url: str = ""
    requires_dist: tuple[str, ...] = ()
    classifiers: tuple[str, ...] = ()
    python_versions: tuple[str, ...] = field(default=DEFAULT_PYTHON_VERSIONS)

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> PackageInfo:
        """Parse the response of the PyPI JSON API (``/pypi/<name>/json``)."""
        info = obj.get("info")
        if not isinstance(info, dict):
            msg = "Registry response has no `info` object"
            raise RegistryError(msg)
        name = info.get("name") or ""
        classifiers = [c for c in info.get("classifiers") or () if isinstance(c, str)]
        return cls(
            name=name,
            version=info.get("version") or "0.0.0",
            summary=info.get("summary") or "",
            author=info.get("author") or "",
            author_email=info.get("author_email") or "",
            license=info.get("license") or "",
            home_page=info.get("home_page") or "",
            pypi_url=info.get("package_url") or f"https://pypi.org/project/{name}/",
            requires_dist=tuple(info.get("requires_dist") or ()),
            classifiers=tuple(classifiers),
            python_versions=tuple(python_versions_from_classifiers(classifiers)),
        )

    @property
    def direct_dependencies(self) -> list[str]:
        return [requirement for requirement in self.requires_dist if not is_extra_requirement(requirement)]

    def update_record(self, record: InstallationRecord) -> InstallationRecord:
        """Copy registry metadata into `record`, keeping fields the registry leaves blank."""
        if self.summary:
            record.description = self.summary
        if self.author:
            record.author = self.author
        if self.author_email:
            record.author_email = self.author_email
        if self.license:
            record.license = self.license
        if self.home_page:
            record.home_page = self.home_page
        record.pypi_url = self.pypi_url or record.pypi_url
        record.classifiers = list(self.classifiers)
        record.python_versions = list(self.python_versions)
        return record


class RegistryClient(ABC):
    """Source of package metadata."""

    @abstractmethod
    def get_package_info(self, name: str) -> PackageInfo:
        """Fetch the metadata of the latest release of `name`.

        Raises:
            RegistryError: if the package is unknown or the registry cannot be reached

        """
        raise NotImplementedError

    def get_direct_dependencies(self, name: str) -> list[str]:
        """Get the raw requirement strings `name` declares, excluding optional extras."""
        return self.get_package_info(name).direct_dependencies

    def get_supported_interpreter_versions(self, name: str) -> list[str]:
        return list(self.get_package_info(name).python_versions)

    def get_latest_version(self, name: str) -> str:
        return self.get_package_info(name).version


@dataclass
class CacheEntry:
    """A cached registry response with an expiry time."""

    value: PackageInfo
    expires_at: float

    def is_expired(self) -> bool:
        return time.monotonic() > self.expires_at


class PyPIClient(RegistryClient):
    """Client for the PyPI JSON API."""

    def __init__(
        self,
        base_url: str = PYPI_URL,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Session | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Root of the JSON API
            cache_ttl: Seconds a fetched package stays cached; 0 disables caching
            timeout: Request timeout in seconds
            session: HTTP session to use (a new one is created if omitted)

        """
        self.base_url: str = base_url.rstrip("/")
        self.cache_ttl: float = cache_ttl
        self.timeout: float = timeout
        self.session: Session = session if session is not None else Session()
        self.session.headers["Accept"] = "application/json"
        self._cache: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def _cached(self, name: str) -> PackageInfo | None:
        with self._lock:
            entry = self._cache.get(name)
            if entry is None:
                return None
            if entry.is_expired():
                del self._cache[name]
                return None
            return entry.value

    def get_package_info(self, name: str) -> PackageInfo:
        key = normalize_name(name)
        if not key:
            msg = f"Invalid package name: {name!r}"
            raise RegistryError(msg)
        cached = self._cached(key)
        if cached is not None:
            logger.debug("Registry cache hit for %s", key)
            return cached
        url = f"{self.base_url}/{key}/json"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except RequestException as e:
            msg = f"Could not reach the registry for {key}: {e}"
            raise RegistryError(msg) from e
        if response.status_code == 404:
            msg = f"Package {key} was not found in the registry"
            raise RegistryError(msg)
        if response.status_code != 200:
            msg = f"Registry returned HTTP {response.status_code} for {key}"
            raise RegistryError(msg)
        try:
            info = PackageInfo.from_json(response.json())
        except ValueError as e:
            msg = f"Invalid registry response for {key}: {e}"
            raise RegistryError(msg) from e
        if self.cache_ttl > 0:
            with self._lock:
                self._cache[key] = CacheEntry(value=info, expires_at=time.monotonic() + self.cache_ttl)
        return info

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def close(self) -> None:
        self.session.close()
