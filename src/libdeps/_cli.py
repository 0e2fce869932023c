"""Command-line interface for libdeps."""

from __future__ import annotations

import json
import logging
import sys
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import OperationalError
from tqdm import tqdm

from . import __version__ as libdeps_version
from .config import Action, OutputFormat, Settings
from .db import RecordStore
from .events import InstallCompleted, InstallProgress
from .installer import PipInstaller
from .logger import setup_logger
from .orchestrator import PackageManager
from .registry import PyPIClient
from .resolver import DependencyResolver

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from .events import InstallEvent, InstallResult

logger = logging.getLogger(__name__)

GRAPH_ACTIONS = frozenset(
    {Action.resolve, Action.order, Action.conflicts, Action.cycles, Action.affected, Action.prune, Action.stats, Action.graph}
)
TARGETED_ACTIONS = frozenset({Action.install, Action.uninstall, Action.upgrade, Action.resolve, Action.affected})


def build_resolver(settings: Settings) -> DependencyResolver:
    """Create the dependency graph described by the command line."""
    resolver = DependencyResolver.with_common_packages() if settings.common_packages else DependencyResolver()
    if settings.graph_file is not None:
        mapping = json.loads(settings.graph_file.read_text())
        if not isinstance(mapping, dict):
            msg = f"{settings.graph_file} must contain a JSON object mapping libraries to requirements"
            raise ValueError(msg)
        for library, requirements in mapping.items():
            if not isinstance(requirements, list):
                msg = f"The requirements of {library!r} in {settings.graph_file} must be a list, not {requirements!r}"
                raise ValueError(msg)
            resolver.add_dependency(library, requirements)
    return resolver


def progress_listener(bar: tqdm) -> Callable[[InstallEvent], None]:
    """Render installation events on a `tqdm` progress bar (whose total is 100)."""

    def listener(event: InstallEvent) -> None:
        if isinstance(event, InstallProgress):
            bar.update(event.percent - bar.n)
            bar.set_postfix_str(event.detail or event.step.value)
        elif isinstance(event, InstallCompleted):
            bar.update(event.percent - bar.n)
            bar.set_postfix_str("done" if event.success else "failed")

    return listener


def _install(manager: PackageManager, settings: Settings) -> InstallResult:
    options = settings.install_options()
    logger.info("%s", options.summary())
    job = manager.submit_install(options)
    with tqdm(total=100, desc=options.package_name, unit="%", leave=False) as bar:
        try:
            return job.wait(progress_listener(bar))
        except KeyboardInterrupt:
            job.cancel()
            return job.result()


def _upgrade(manager: PackageManager, settings: Settings) -> InstallResult:
    with tqdm(total=100, desc=settings.target, unit="%", leave=False) as bar:
        return manager.upgrade_package(settings.target, progress_listener(bar), python_version=settings.python)


def _as_text(obj: Any) -> str:  # noqa: ANN401
    if isinstance(obj, dict):
        return "\n".join(f"{key}: {_as_text(value)}" for key, value in obj.items())
    if isinstance(obj, list | tuple):
        return "\n".join(_as_text(item) for item in obj)
    return str(obj)


def render(obj: Any, output_format: OutputFormat) -> str:  # noqa: ANN401
    if output_format == OutputFormat.text:
        return f"{_as_text(obj)}\n"
    return f"{json.dumps(obj, indent=4)}\n"


def run_graph_action(resolver: DependencyResolver, settings: Settings) -> Any:  # noqa: ANN401, C901, PLR0911
    """Answer one of the dependency graph questions in `GRAPH_ACTIONS`."""
    action = settings.action
    if action == Action.resolve:
        return sorted(resolver.resolve_dependencies(settings.target, settings.depth_limit))
    if action == Action.affected:
        return sorted(resolver.get_affected_libraries(settings.target))
    if action == Action.conflicts:
        return [conflict.to_obj() for conflict in resolver.detect_conflicts()]
    if action == Action.cycles:
        return sorted(resolver.circular_libraries())
    if action == Action.prune:
        return resolver.remove_unused_dependencies(settings.targets)
    if action == Action.stats:
        return resolver.get_statistics().to_obj()

    removed = resolver.resolve_circular_dependencies() if settings.break_cycles else []
    if action == Action.order:
        order = resolver.topological_sort()
        if not settings.break_cycles:
            return order
        return {"order": order, "removed_edges": [str(edge) for edge in removed]}
    if settings.output_format == OutputFormat.dot:
        return resolver.to_dot(settings.target or None).source
    return {library: sorted(dependencies) for library, dependencies in sorted(resolver.get_dependency_graph().items())}


def run_record_action(manager: PackageManager, settings: Settings) -> tuple[Any, bool]:  # noqa: C901, PLR0911
    """Run an action that installs, removes or lists libraries.

    Returns:
        The object to output and whether the action succeeded

    """
    action = settings.action
    if action == Action.install:
        result = _install(manager, settings)
        return result.to_obj(), result.success
    if action == Action.upgrade:
        result = _upgrade(manager, settings)
        return result.to_obj(), result.success
    if action == Action.uninstall:
        failed = manager.uninstall_packages(settings.targets)
        uninstalled = [name for name in settings.targets if name not in failed]
        return {"uninstalled": uninstalled, "failed": failed}, not failed
    if action == Action.outdated:
        return [record.to_obj() for record in manager.check_for_updates()], True
    if action == Action.refresh:
        return [record.to_obj() for record in manager.refresh_installed_libraries()], True
    if action == Action.logs:
        return manager.store.installation_logs(), True
    records = manager.resolver.filter_compatible(manager.get_installed_libraries(), settings.python)
    return [record.to_obj() for record in records], True


def main(argv: Sequence[str] | None = None) -> int:  # noqa: C901, PLR0911
    settings = Settings(_cli_parse_args=list(argv) if argv is not None else True, _cli_prog_name="libdeps")
    setup_logger(settings.log_level, settings.log_file)

    if settings.version:
        logger.info("libdeps version %s", libdeps_version)
        return 0

    logger.debug("Starting libdeps with settings: %s", settings)

    if settings.action in TARGETED_ACTIONS and not settings.targets:
        logger.error("`--action %s` requires a `--target`", settings.action.value)
        return 2

    if settings.output_file is None:
        output_write = sys.stdout.write
    else:
        if not settings.force and settings.output_file.exists():
            logger.error("%s already exists!\nRe-run with `--force` to overwrite the file.\n", settings.output_file)
            return 1
        output_write = settings.output_file.write_text

    try:
        resolver = build_resolver(settings)
    except (OSError, ValueError):
        logger.exception("Could not load the dependency graph from %s", settings.graph_file)
        return 1

    registry = PyPIClient(settings.registry_url, cache_ttl=settings.cache_ttl, timeout=settings.timeout)
    try:
        with RecordStore(settings.database) as store, PackageManager(
            registry,
            PipInstaller(),
            store,
            resolver,
            max_workers=settings.max_workers,
            drop_record_on_failure=not settings.keep_failed_records,
            prune_graph_on_uninstall=settings.prune_graph,
        ) as manager:
            manager.register_installed_dependencies()
            if settings.action in GRAPH_ACTIONS:
                output = run_graph_action(resolver, settings)
                success = True
            else:
                output, success = run_record_action(manager, settings)
    except OperationalError as e:
        msg = (
            f"Database error: {e!r}\n\nIf you remove {settings.database} and try again, the database will "
            "automatically be rebuilt from scratch (the installation records will be lost)."
        )
        logger.exception(msg)
        return 1
    finally:
        registry.close()

    if isinstance(output, str):
        output_write(output if output.endswith("\n") else f"{output}\n")
    else:
        output_write(render(output, settings.output_format))
    if settings.output_file is not None:
        logger.info("Output saved to %s", settings.output_file.absolute())
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
