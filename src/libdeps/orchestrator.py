"""Installation orchestration: runs the install pipeline and keeps the installation records."""

from __future__ import annotations

import dataclasses
import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Self

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
from .events import (
    InstallCompleted,
    InstallProgress,
    InstallResult,
    InstallStarted,
    ProgressStep,
)
from .installer import split_requires
from .models import InstallationRecord, LibrarySpec, normalize_name
from .options import InstallOptions
from .resolver import DependencyResolver

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from .db import RecordStore
    from .events import InstallEvent
    from .installer import InstallerTool
    from .registry import PackageInfo, RegistryClient

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 2


class InstallJob:
    """An installation running on the `PackageManager`'s worker pool.

    Events are queued by the worker and handed out on whichever thread iterates
    `events()` (or calls `wait()`), so listeners never run on the worker thread.
    """

    def __init__(self, package: str) -> None:
        self.package: str = package
        self.cancel_event = threading.Event()
        self.future: Future[InstallResult] | None = None
        self._events: queue.Queue[InstallEvent] = queue.Queue()

    def _publish(self, event: InstallEvent) -> None:
        self._events.put(event)

    def events(self, timeout: float | None = None) -> Iterator[InstallEvent]:
        """Yield the job's events in order, ending with its `InstallCompleted`.

        The events can only be consumed once.

        Raises:
            queue.Empty: if no event arrives within `timeout` seconds

        """
        while True:
            event = self._events.get(timeout=timeout)
            yield event
            if isinstance(event, InstallCompleted):
                return

    def wait(self, listener: Callable[[InstallEvent], None] | None = None, timeout: float | None = None) -> InstallResult:
        """Deliver every event to `listener` on the calling thread, then return the result."""
        for event in self.events(timeout):
            if listener is not None:
                listener(event)
        return self.result(timeout)

    def result(self, timeout: float | None = None) -> InstallResult:
        if self.future is None:
            msg = f"The installation of {self.package} was never submitted"
            raise RuntimeError(msg)
        return self.future.result(timeout)

    def cancel(self) -> None:
        """Ask the pipeline to stop before its next step or package.

        Packages that were already installed stay installed.
        """
        self.cancel_event.set()

    def done(self) -> bool:
        return self.future is not None and self.future.done()


class _Run:
    """The mutable state of a single pipeline run."""

    def __init__(
        self,
        options: InstallOptions,
        listener: Callable[[InstallEvent], None] | None,
        cancel_event: threading.Event | None,
    ) -> None:
        self.options = options
        self.package: str = options.package_name.strip() if options.package_name else ""
        self.listener = listener
        self.cancel_event = cancel_event
        self.installed: list[str] = []
        self.failed: list[str] = []
        self.log: list[str] = []
        self.show: dict[str, str] | None = None

    def emit(self, event: InstallEvent) -> None:
        if self.listener is None:
            return
        try:
            self.listener(event)
        except Exception:
            logger.exception("Installation listener failed on %s", event)

    def progress(self, percent: int, step: ProgressStep, detail: str = "") -> None:
        self.check_cancelled()
        self.log.append(f"[{percent}%] {step.value} {detail}".rstrip())
        self.emit(InstallProgress(package=self.package, percent=percent, step=step, detail=detail))

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise InstallCancelledError(self.package)


class PackageManager:
    """Installs, upgrades and removes libraries and keeps their `InstallationRecord`s.

    Every `install_package` call runs the same pipeline::

        compatibility check (10%) -> dependency fetch (30%) -> pipeline assembled (50%)
        -> install each of [target] + dependencies (50% .. 90%) -> verification (95%)
        -> completed (100%)

    Validation and incompatibility failures abort before the installer is invoked. A
    failing package does not stop the remaining installs; failures are aggregated into
    the terminal `InstallCompleted` event.
    """

    def __init__(
        self,
        registry: RegistryClient,
        installer: InstallerTool,
        store: RecordStore,
        resolver: DependencyResolver | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        *,
        drop_record_on_failure: bool = True,
        prune_graph_on_uninstall: bool = False,
    ) -> None:
        """Initialize the manager.

        Args:
            registry: Source of package metadata
            installer: Tool that runs the install commands
            store: Persistent store for installation records and logs
            resolver: Dependency graph used to prune unused libraries after uninstalls
            max_workers: Size of the worker pool used by the ``submit_*`` methods
            drop_record_on_failure: Delete a package's stored record when installing it fails
            prune_graph_on_uninstall: Default for `uninstall_package`'s ``prune_graph``

        """
        if max_workers < 1:
            msg = f"max_workers must be at least 1, not {max_workers}"
            raise ValueError(msg)
        self.registry: RegistryClient = registry
        self.installer: InstallerTool = installer
        self.store: RecordStore = store
        self.resolver: DependencyResolver = resolver if resolver is not None else DependencyResolver()
        self.drop_record_on_failure: bool = drop_record_on_failure
        self.prune_graph_on_uninstall: bool = prune_graph_on_uninstall
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="libdeps-install")

    def close(self) -> None:
        self._pool.shutdown(wait=True)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.close()

    # Installation

    def install_package(
        self,
        options: InstallOptions,
        listener: Callable[[InstallEvent], None] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> InstallResult:
        """Run the installation pipeline for `options` on the calling thread.

        Exactly one `InstallStarted` and exactly one `InstallCompleted` are emitted to
        `listener`, with `InstallProgress` events in between. This never raises for a
        failed installation; the failure is described by the returned result.
        """
        run = _Run(options, listener, cancel_event)
        run.emit(InstallStarted(package=run.package))
        try:
            self._run_pipeline(run)
        except InstallError as e:
            completed = self._failed(run, e.kind, e.message)
        except Exception as e:
            logger.exception("Unexpected error while installing %s", run.package)
            completed = self._failed(run, InstallErrorKind.UNEXPECTED, f"Unexpected error: {e}")
        else:
            completed = InstallCompleted(
                package=run.package,
                success=True,
                message=f"Installed {run.package} successfully",
            )
        if completed.error is not InstallErrorKind.VALIDATION:
            run.log.append(completed.message)
            self._save_log(run)
        run.emit(completed)
        return InstallResult.from_event(completed, installed=tuple(run.installed))

    def _failed(self, run: _Run, kind: InstallErrorKind, message: str) -> InstallCompleted:
        if kind is InstallErrorKind.CANCELLED:
            logger.warning("%s", message)
        else:
            logger.error("Installing %s failed: %s", run.package or "<unnamed>", message)
        return InstallCompleted(
            package=run.package,
            success=False,
            message=message,
            error=kind,
            failed_packages=tuple(run.failed),
        )

    def _save_log(self, run: _Run) -> None:
        try:
            self.store.save_installation_log(run.package, "\n".join(run.log))
        except Exception:
            logger.exception("Could not save the installation log of %s", run.package)

    def _run_pipeline(self, run: _Run) -> None:
        options = run.options
        if not options.is_valid():
            raise ValidationError(run.package)
        run.check_cancelled()

        run.progress(10, ProgressStep.COMPATIBILITY_CHECK)
        if options.check_compatibility and options.target_python is not None:
            self._check_compatibility(run.package, options.target_python)

        run.progress(30, ProgressStep.DEPENDENCY_FETCH)
        dependencies = self.fetch_dependencies(run.package) if options.install_dependencies else []

        packages = [run.package, *dependencies]
        run.progress(50, ProgressStep.PIPELINE_ASSEMBLED, ", ".join(packages))

        for i, package in enumerate(packages):
            run.progress(50 + i * 40 // len(packages), ProgressStep.INSTALLING, f"{package} ({i + 1}/{len(packages)})")
            package_options = options if i == 0 else options.for_dependency(package)
            command = package_options.build_install_command()
            code = self.installer.run(command, options.target_python)
            if code == 0:
                run.installed.append(package)
                run.log.append(f"{package}: installed")
                self._record_installed(package)
            else:
                run.failed.append(package)
                run.log.append(f"{package}: failed with exit code {code}")
                self._record_failed(package)

        run.progress(95, ProgressStep.VERIFYING)
        run.show = self.installer.show(run.package, options.target_python)
        if run.failed:
            raise InstallExecutionError(run.package, run.failed)
        if run.show is None:
            raise VerificationError(run.package)
        self._record_completed(run)

    def _check_compatibility(self, package: str, python_version: str) -> None:
        try:
            supported = self.registry.get_supported_interpreter_versions(package)
        except RegistryError as e:
            logger.warning("Could not check the compatibility of %s, assuming it is compatible: %s", package, e)
            return
        if python_version not in supported:
            raise IncompatibilityError(package, python_version, supported)

    def fetch_dependencies(self, package: str) -> list[str]:
        """Get the normalized direct dependencies of `package` from the registry.

        Only a single level is fetched; the dependencies' own requirements are left for
        the installer to satisfy. Registry failures yield no dependencies.
        """
        try:
            requirements = self.registry.get_direct_dependencies(package)
        except RegistryError as e:
            logger.warning("Could not fetch the dependencies of %s: %s", package, e)
            return []
        target = normalize_name(package)
        dependencies: list[str] = []
        for requirement in requirements:
            spec = LibrarySpec.parse(requirement)
            if spec is None or spec.name == target or spec.name in dependencies:
                continue
            dependencies.append(spec.name)
        return dependencies

    def _record_installed(self, package: str) -> None:
        record = self.store.get_record(package)
        if record is None:
            record = InstallationRecord(name=package)
        self.store.upsert_record(record.touch())

    def _record_failed(self, package: str) -> None:
        if self.drop_record_on_failure and self.store.delete_record(package):
            logger.warning("Deleted the installation record of %s because installing it failed", package)

    def _record_completed(self, run: _Run) -> None:
        record = self.store.get_record(run.package) or InstallationRecord(name=run.package)
        show = run.show or {}
        record.version = show.get("Version") or record.version
        record.description = show.get("Summary") or record.description
        record.author = show.get("Author") or record.author
        record.author_email = show.get("Author-email") or record.author_email
        record.license = show.get("License") or record.license
        record.home_page = show.get("Home-page") or record.home_page
        if "Requires" in show:
            record.dependencies = split_requires(show["Requires"])
        info = self._package_info(run.package)
        if info is not None:
            info.update_record(record)
        record.is_updated = False
        self.store.upsert_record(record.touch())

    def _package_info(self, package: str) -> PackageInfo | None:
        try:
            return self.registry.get_package_info(package)
        except RegistryError as e:
            logger.debug("No registry metadata for %s: %s", package, e)
            return None

    def submit_install(self, options: InstallOptions) -> InstallJob:
        """Run `install_package` on the worker pool.

        Returns:
            A job whose events can be consumed on the calling thread

        """
        job = InstallJob(options.package_name)
        job.future = self._pool.submit(self.install_package, options, job._publish, job.cancel_event)
        return job

    def upgrade_package(
        self, name: str, listener: Callable[[InstallEvent], None] | None = None, python_version: str | None = None
    ) -> InstallResult:
        """Upgrade `name` to its latest release (without touching its dependencies)."""
        options = InstallOptions(
            package_name=name,
            upgrade_if_installed=True,
            install_dependencies=False,
            check_compatibility=True,
            python_version=python_version,
        )
        return self.install_package(options, listener)

    # Removal

    def uninstall_package(self, name: str, prune_graph: bool | None = None) -> bool:  # noqa: FBT001
        """Uninstall `name` and delete its installation record.

        Args:
            name: Library to uninstall
            prune_graph: Also remove the libraries no remaining installed library requires
                from the dependency graph; defaults to ``prune_graph_on_uninstall``

        Returns:
            Whether the uninstall succeeded

        """
        if not normalize_name(name):
            logger.warning("Refusing to uninstall a library without a name")
            return False
        code = self.installer.run(InstallOptions(package_name=name).build_uninstall_command())
        if code != 0:
            logger.warning("Uninstalling %s failed with exit code %d", name, code)
            return False
        self.store.delete_record(name)
        logger.info("Uninstalled %s", name)
        if prune_graph is None:
            prune_graph = self.prune_graph_on_uninstall
        if prune_graph:
            kept = [record.name for record in self.store.load_records()]
            removed = self.resolver.remove_unused_dependencies(kept)
            if removed:
                logger.info("Pruned %s from the dependency graph", ", ".join(removed))
        return True

    def uninstall_packages(self, names: Iterable[str]) -> list[str]:
        """Uninstall several libraries in order.

        Returns:
            The names that could not be uninstalled

        """
        return [name for name in names if not self.uninstall_package(name)]

    def submit_uninstall(self, name: str) -> Future[bool]:
        return self._pool.submit(self.uninstall_package, name)

    # Records

    def get_installed_libraries(self) -> list[InstallationRecord]:
        return self.store.load_records()

    def check_for_updates(self) -> list[InstallationRecord]:
        """Find the installed libraries whose latest registry version differs from the recorded one.

        The returned records are flagged with ``is_updated``; the stored records are
        left unchanged. Libraries the registry cannot describe are skipped.
        """
        updatable: list[InstallationRecord] = []
        for record in self.store.load_records():
            try:
                latest = self.registry.get_latest_version(record.name)
            except RegistryError as e:
                logger.warning("Could not check %s for updates: %s", record.name, e)
                continue
            if latest != record.version:
                updatable.append(dataclasses.replace(record, is_updated=True))
        return updatable

    def submit_check_for_updates(self) -> Future[list[InstallationRecord]]:
        return self._pool.submit(self.check_for_updates)

    def refresh_installed_libraries(self) -> list[InstallationRecord]:
        """Rebuild the stored records from the installer's list of installed distributions.

        Metadata already known for a distribution is kept; only its version is refreshed.
        """
        known = {normalize_name(record.name): record for record in self.store.load_records()}
        records: list[InstallationRecord] = []
        for entry in self.installer.list_installed():
            record = known.get(normalize_name(entry["name"]))
            if record is None:
                record = InstallationRecord(name=entry["name"])
            if entry.get("version"):
                record.version = entry["version"]
            records.append(record.touch())
        self.store.save_records(records)
        logger.info("Refreshed %d installation records", len(records))
        return records

    def register_installed_dependencies(self) -> None:
        """Add every stored record's declared dependencies to the dependency graph."""
        for record in self.store.load_records():
            self.resolver.add_library(record)
