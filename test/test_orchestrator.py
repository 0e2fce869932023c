from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import pytest

from libdeps.db import RecordStore
from libdeps.errors import InstallErrorKind
from libdeps.events import InstallCompleted, InstallProgress, InstallStarted, ProgressStep
from libdeps.models import InstallationRecord
from libdeps.options import InstallOptions
from libdeps.orchestrator import PackageManager
from libdeps.resolver import DependencyResolver

if TYPE_CHECKING:
    from conftest import FakeInstaller, FakeRegistry

FLASK_REQUIRES = ("Werkzeug>=3.0.0", "Jinja2>=3.1.2", "click>=8.1.3", "asgiref>=3.2 ; extra == 'async'")


@pytest.fixture
def flask(registry: FakeRegistry) -> FakeRegistry:
    registry.add("flask", version="3.0.0", requires=FLASK_REQUIRES)
    registry.add("werkzeug", version="3.0.1")
    registry.add("jinja2", version="3.1.2")
    registry.add("click", version="8.1.7")
    return registry


def collect(manager: PackageManager, options: InstallOptions, **kwargs) -> tuple[list, object]:  # noqa: ANN003
    events: list = []
    result = manager.install_package(options, events.append, **kwargs)
    return events, result


class TestInstallPackage:
    def test_install_flask(self, manager: PackageManager, installer: FakeInstaller, flask: FakeRegistry) -> None:  # noqa: ARG002
        events, result = collect(manager, InstallOptions("flask", python_version="3.11"))
        assert result.success
        assert result.error is None
        assert result.installed_packages == ("flask", "werkzeug", "jinja2", "click")
        assert [command[-1] for command in installer.install_commands] == ["flask", "werkzeug", "jinja2", "click"]
        record = manager.store.get_record("flask")
        assert record is not None
        assert record.description == "The flask library"
        assert record.python_versions == ["3.10", "3.11", "3.12"]
        assert not record.is_updated
        assert {r.name for r in manager.get_installed_libraries()} == {"flask", "werkzeug", "jinja2", "click"}
        assert isinstance(events[-1], InstallCompleted)
        assert events[-1].message == "Installed flask successfully"

    def test_event_order(self, manager: PackageManager, flask: FakeRegistry) -> None:  # noqa: ARG002
        events, _ = collect(manager, InstallOptions("flask"))
        assert isinstance(events[0], InstallStarted)
        assert isinstance(events[-1], InstallCompleted)
        assert sum(isinstance(e, InstallStarted) for e in events) == 1
        assert sum(isinstance(e, InstallCompleted) for e in events) == 1
        progress = [e for e in events if isinstance(e, InstallProgress)]
        assert [p.percent for p in progress] == [10, 30, 50, 50, 60, 70, 80, 95]
        assert [p.step for p in progress[:3]] == [
            ProgressStep.COMPATIBILITY_CHECK,
            ProgressStep.DEPENDENCY_FETCH,
            ProgressStep.PIPELINE_ASSEMBLED,
        ]
        assert progress[-1].step is ProgressStep.VERIFYING
        percents = [p.percent for p in progress] + [events[-1].percent]
        assert percents == sorted(percents)

    def test_version_pin_only_for_target(
        self,
        manager: PackageManager,
        installer: FakeInstaller,
        flask: FakeRegistry,  # noqa: ARG002
    ) -> None:
        result = manager.install_package(InstallOptions("flask", version="2.0.1", install_as_user=False))
        assert result.success
        assert installer.install_commands[0] == ["pip", "install", "--upgrade", "flask==2.0.1"]
        assert installer.install_commands[1] == ["pip", "install", "--upgrade", "werkzeug"]
        record = manager.store.get_record("flask")
        assert record is not None
        assert record.version == "2.0.1"

    def test_padded_name_keeps_pin_and_flags(
        self,
        manager: PackageManager,
        installer: FakeInstaller,
        flask: FakeRegistry,  # noqa: ARG002
    ) -> None:
        options = InstallOptions(" flask ", version="2.0.1", install_as_user=False, no_cache=True)
        assert manager.install_package(options).success
        assert installer.install_commands[0] == ["pip", "install", "--upgrade", "--no-cache-dir", "flask==2.0.1"]
        for command in installer.install_commands[1:]:
            assert command[:4] == ["pip", "install", "--upgrade", "--no-cache-dir"]
            assert "==" not in command[-1]

    def test_without_dependencies(
        self,
        manager: PackageManager,
        installer: FakeInstaller,
        flask: FakeRegistry,  # noqa: ARG002
    ) -> None:
        events, result = collect(manager, InstallOptions("flask", install_dependencies=False))
        assert result.success
        assert [command[-1] for command in installer.install_commands] == ["flask"]
        assert [e.percent for e in events if isinstance(e, InstallProgress)] == [10, 30, 50, 50, 95]

    def test_incompatible(
        self, manager: PackageManager, installer: FakeInstaller, registry: FakeRegistry, store: RecordStore
    ) -> None:
        registry.add("legacy", python_versions=("2.7", "3.6"))
        events, result = collect(manager, InstallOptions("legacy", python_version="3.11"))
        assert not result.success
        assert result.error is InstallErrorKind.INCOMPATIBILITY
        assert result.error.aborts_before_install
        assert "3.11" in result.message
        assert installer.install_commands == []
        assert store.get_record("legacy") is None
        assert not any(isinstance(e, InstallProgress) and e.percent > 10 for e in events)

    def test_compatibility_check_skipped(
        self, manager: PackageManager, installer: FakeInstaller, registry: FakeRegistry
    ) -> None:
        registry.add("legacy", python_versions=("2.7",))
        assert manager.install_package(InstallOptions("legacy", python_version="all")).success
        assert manager.install_package(InstallOptions("legacy", python_version="3.11", check_compatibility=False))
        assert len(installer.install_commands) == 2

    def test_unknown_to_registry_is_still_installed(self, manager: PackageManager, installer: FakeInstaller) -> None:
        result = manager.install_package(InstallOptions("private-lib", python_version="3.11"))
        assert result.success
        assert [command[-1] for command in installer.install_commands] == ["private-lib"]

    def test_validation(self, manager: PackageManager, installer: FakeInstaller, store: RecordStore) -> None:
        events, result = collect(manager, InstallOptions("  "))
        assert not result.success
        assert result.error is InstallErrorKind.VALIDATION
        assert [type(e) for e in events] == [InstallStarted, InstallCompleted]
        assert installer.commands == []
        assert store.installation_logs() == {}

    def test_failures_are_aggregated(
        self, manager: PackageManager, installer: FakeInstaller, store: RecordStore, flask: FakeRegistry  # noqa: ARG002
    ) -> None:
        store.upsert_record(InstallationRecord(name="jinja2", version="2.0"))
        installer.failing = {"jinja2", "click"}
        result = manager.install_package(InstallOptions("flask"))
        assert not result.success
        assert result.error is InstallErrorKind.INSTALL_EXECUTION
        assert result.failed_packages == ("jinja2", "click")
        assert result.message == "Failed to install: jinja2, click"
        assert len(installer.install_commands) == 4
        assert store.get_record("jinja2") is None
        assert store.get_record("werkzeug") is not None

    def test_failed_record_can_be_kept(
        self,
        registry: FakeRegistry,
        installer: FakeInstaller,
        store: RecordStore,
        flask: FakeRegistry,  # noqa: ARG002
    ) -> None:
        store.upsert_record(InstallationRecord(name="jinja2", version="2.0"))
        installer.failing = {"jinja2"}
        with PackageManager(registry, installer, store, drop_record_on_failure=False) as manager:
            assert not manager.install_package(InstallOptions("flask"))
        record = store.get_record("jinja2")
        assert record is not None
        assert record.version == "2.0"

    def test_verification_failure(
        self, manager: PackageManager, installer: FakeInstaller, flask: FakeRegistry  # noqa: ARG002
    ) -> None:
        installer.unverifiable = {"flask"}
        result = manager.install_package(InstallOptions("flask"))
        assert not result.success
        assert result.error is InstallErrorKind.VERIFICATION
        assert result.failed_packages == ()

    def test_cancellation(self, manager: PackageManager, installer: FakeInstaller, flask: FakeRegistry) -> None:  # noqa: ARG002
        cancel = threading.Event()
        installer.before_run.append(lambda argv: cancel.set())
        events, result = collect(manager, InstallOptions("flask"), cancel_event=cancel)
        assert result.error is InstallErrorKind.CANCELLED
        assert result.installed_packages == ("flask",)
        assert len(installer.install_commands) == 1
        assert isinstance(events[-1], InstallCompleted)

    def test_unexpected_error(self, manager: PackageManager, installer: FakeInstaller) -> None:
        def explode(argv: list[str]) -> None:
            msg = f"cannot run {argv}"
            raise RuntimeError(msg)

        installer.before_run.append(explode)
        events, result = collect(manager, InstallOptions("six"))
        assert result.error is InstallErrorKind.UNEXPECTED
        assert isinstance(events[-1], InstallCompleted)

    def test_failing_listener_does_not_abort(self, manager: PackageManager) -> None:
        def listener(event: object) -> None:  # noqa: ARG001
            msg = "listener bug"
            raise ValueError(msg)

        assert manager.install_package(InstallOptions("six"), listener).success

    def test_log_is_saved(self, manager: PackageManager, store: RecordStore) -> None:
        manager.install_package(InstallOptions("six"))
        logs = store.installation_logs()
        assert len(logs) == 1
        key, text = next(iter(logs.items()))
        assert key.startswith("six_")
        assert "six: installed" in text
        assert text.endswith("Installed six successfully")

    def test_install_leaves_graph_alone(
        self,
        manager: PackageManager,
        resolver: DependencyResolver,
        flask: FakeRegistry,  # noqa: ARG002
    ) -> None:
        before = resolver.get_dependency_graph()
        assert manager.install_package(InstallOptions("flask"))
        assert manager.uninstall_package("flask")
        assert manager.store.get_record("flask") is None
        assert resolver.get_dependency_graph() == before


class TestSubmit:
    def test_submit_install(self, manager: PackageManager, flask: FakeRegistry) -> None:  # noqa: ARG002
        job = manager.submit_install(InstallOptions("flask"))
        threads: set[int] = set()
        events: list = []

        def listener(event: object) -> None:
            threads.add(threading.get_ident())
            events.append(event)

        result = job.wait(listener, timeout=10)
        assert result.success
        assert job.done()
        assert threads == {threading.get_ident()}
        assert isinstance(events[0], InstallStarted)
        assert isinstance(events[-1], InstallCompleted)

    def test_concurrent_installs(self, manager: PackageManager, store: RecordStore) -> None:
        jobs = [manager.submit_install(InstallOptions(name, install_dependencies=False)) for name in ("six", "idna")]
        assert all(job.wait(timeout=10).success for job in jobs)
        assert {r.name for r in store.load_records()} == {"six", "idna"}
        assert len(store.installation_logs()) == 2

    def test_submit_uninstall(self, manager: PackageManager, installer: FakeInstaller) -> None:
        installer.installed["six"] = "1.16.0"
        assert manager.submit_uninstall("six").result(timeout=10)
        assert "six" not in installer.installed

    def test_invalid_pool_size(
        self, registry: FakeRegistry, installer: FakeInstaller, store: RecordStore
    ) -> None:
        with pytest.raises(ValueError, match="max_workers"):
            PackageManager(registry, installer, store, max_workers=0)


class TestRecords:
    def test_upgrade(self, manager: PackageManager, installer: FakeInstaller, registry: FakeRegistry) -> None:
        registry.add("six", version="1.16.0", requires=("nothing-else",))
        assert manager.upgrade_package("six").success
        assert installer.install_commands == [["pip", "install", "--upgrade", "--user", "--no-warn-script-location", "six"]]

    def test_uninstall(self, manager: PackageManager, installer: FakeInstaller, store: RecordStore) -> None:
        assert not manager.uninstall_package("")
        assert installer.commands == []
        assert not manager.uninstall_package("not-installed")
        installer.installed["six"] = "1.16.0"
        store.upsert_record(InstallationRecord(name="six"))
        assert manager.uninstall_packages(["six", "not-installed"]) == ["not-installed"]
        assert store.get_record("six") is None

    def test_uninstall_prunes_graph(
        self,
        manager: PackageManager,
        resolver: DependencyResolver,
        flask: FakeRegistry,  # noqa: ARG002
    ) -> None:
        assert manager.install_package(InstallOptions("flask"))
        assert manager.uninstall_package("flask", prune_graph=True)
        graph = resolver.get_dependency_graph()
        assert "flask" not in graph
        assert "click" in graph
        assert "jinja2" in graph
        assert "numpy" not in graph

    def test_check_for_updates(self, manager: PackageManager, registry: FakeRegistry, store: RecordStore) -> None:
        registry.add("six", version="1.16.0")
        registry.add("click", version="8.1.7")
        store.save_records(
            [
                InstallationRecord(name="six", version="1.15.0"),
                InstallationRecord(name="click", version="8.1.7"),
                InstallationRecord(name="ghost", version="0.1"),
            ]
        )
        updatable = manager.check_for_updates()
        assert [r.name for r in updatable] == ["six"]
        assert updatable[0].is_updated
        stored = store.get_record("six")
        assert stored is not None
        assert not stored.is_updated
        assert [r.name for r in manager.submit_check_for_updates().result(timeout=10)] == ["six"]

    def test_refresh(self, manager: PackageManager, installer: FakeInstaller, store: RecordStore) -> None:
        store.upsert_record(InstallationRecord(name="six", version="1.15.0", author="Benjamin Peterson"))
        store.upsert_record(InstallationRecord(name="gone"))
        installer.installed = {"six": "1.16.0", "click": "8.1.7"}
        records = manager.refresh_installed_libraries()
        assert [r.name for r in records] == ["click", "six"]
        six = store.get_record("six")
        assert six is not None
        assert six.version == "1.16.0"
        assert six.author == "Benjamin Peterson"
        assert store.get_record("gone") is None

    def test_register_installed_dependencies(
        self, manager: PackageManager, resolver: DependencyResolver, store: RecordStore
    ) -> None:
        store.upsert_record(InstallationRecord(name="myapp", dependencies=["six>=1.5", "Flask"]))
        manager.register_installed_dependencies()
        assert resolver.get_dependency_graph()["myapp"] == {"six", "flask"}
        assert resolver.get_library("myapp") is not None
