from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence

import pytest

from libdeps.db import RecordStore
from libdeps.errors import RegistryError
from libdeps.installer import InstallerTool
from libdeps.orchestrator import PackageManager
from libdeps.registry import PackageInfo, RegistryClient
from libdeps.resolver import DependencyResolver


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--runintegration",
        action="store_true",
        default=False,
        help="run integration tests",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "integration: mark test as an integration test")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--runintegration"):
        # --runintegration given in cli: do not skip integration tests
        return
    skip_integration = pytest.mark.skip(reason="need --runintegration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class FakeRegistry(RegistryClient):
    """An in-memory registry; unknown packages raise `RegistryError`."""

    def __init__(self) -> None:
        self.packages: dict[str, PackageInfo] = {}
        self.calls: list[str] = []

    def add(
        self,
        name: str,
        version: str = "1.0.0",
        requires: Sequence[str] = (),
        python_versions: Sequence[str] = ("3.10", "3.11", "3.12"),
    ) -> None:
        self.packages[name] = PackageInfo(
            name=name,
            version=version,
            summary=f"The {name} library",
            author="Someone",
            license="MIT",
            requires_dist=tuple(requires),
            python_versions=tuple(python_versions),
        )

    def get_package_info(self, name: str) -> PackageInfo:
        self.calls.append(name)
        try:
            return self.packages[name]
        except KeyError:
            msg = f"Package {name} was not found in the registry"
            raise RegistryError(msg) from None


class FakeInstaller(InstallerTool):
    """Records every command and pretends to install packages with pip."""

    def __init__(self) -> None:
        self.commands: list[list[str]] = []
        self.installed: dict[str, str] = {}
        self.failing: set[str] = set()
        self.unverifiable: set[str] = set()
        self.before_run: list = []
        self._lock = threading.Lock()

    def run(self, argv: Sequence[str], interpreter_version: str | None = None) -> int:  # noqa: ARG002
        for hook in self.before_run:
            hook(list(argv))
        with self._lock:
            self.commands.append(list(argv))
        package = argv[-1].split("==")[0]
        if argv[1] == "uninstall":
            if package not in self.installed:
                return 1
            del self.installed[package]
            return 0
        if package in self.failing:
            return 1
        self.installed[package] = argv[-1].split("==")[1] if "==" in argv[-1] else "1.0.0"
        return 0

    def run_capture(self, argv: Sequence[str], interpreter_version: str | None = None) -> tuple[str, int]:  # noqa: ARG002
        with self._lock:
            self.commands.append(list(argv))
        if argv[1] == "show":
            package = argv[-1]
            if package not in self.installed or package in self.unverifiable:
                return "", 1
            return (
                f"Name: {package}\nVersion: {self.installed[package]}\nSummary: Installed {package}\n"
                "Author: Someone\nLicense: MIT\nRequires: \n",
                0,
            )
        if argv[1] == "list":
            entries = ", ".join(f'{{"name": "{n}", "version": "{v}"}}' for n, v in sorted(self.installed.items()))
            return f"[{entries}]", 0
        return "", 1

    @property
    def install_commands(self) -> list[list[str]]:
        return [command for command in self.commands if command[1] == "install"]


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def installer() -> FakeInstaller:
    return FakeInstaller()


@pytest.fixture
def store() -> Iterator[RecordStore]:
    with RecordStore(":memory:") as s:
        yield s


@pytest.fixture
def resolver() -> DependencyResolver:
    return DependencyResolver.with_common_packages()


@pytest.fixture
def manager(
    registry: FakeRegistry, installer: FakeInstaller, store: RecordStore, resolver: DependencyResolver
) -> Iterator[PackageManager]:
    with PackageManager(registry, installer, store, resolver) as m:
        yield m
