"""The dependency resolver: a single owner for the process' dependency graph."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from graphviz import Digraph

from . import resolution
from .graph import DependencyGraph
from .models import normalize_name

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from .models import DependencyConflict, DependencyStatistics, InstallationRecord, RemovedEdge

logger = logging.getLogger(__name__)

COMMON_PACKAGES: dict[str, tuple[str, ...]] = {
    "numpy": ("setuptools", "wheel"),
    "pandas": ("numpy>=1.18.5", "python-dateutil>=2.8.1", "pytz>=2017.3", "six>=1.5.0"),
    "matplotlib": ("numpy>=1.15", "kiwisolver>=1.0.1", "pyparsing>=2.0.1", "pillow>=6.2.0"),
    "requests": ("certifi>=2017.4.17", "charset-normalizer>=2.0.0", "idna>=2.5,<3", "urllib3>=1.21.1,<2"),
    "flask": ("click>=7.1", "itsdangerous>=1.1.0", "jinja2>=2.11.3", "markupsafe>=1.1", "werkzeug>=1.0.1"),
    "django": ("asgiref>=3.3.2,<4", "pytz", "sqlparse>=0.2.2"),
    "scipy": ("numpy>=1.16.5,<2.0", "pyparsing>=2.0.3", "scipy>=1.2.0"),
    "tensorflow": ("numpy>=1.16.0,<1.19.0", "protobuf>=3.6.1", "wrapt>=1.11.1"),
    "beautifulsoup4": ("soupsieve>1.2",),
    "selenium": ("urllib3[socks]", "cryptography>=2.8"),
    "pygame": (),
    "pillow": ("setuptools",),
    "sqlalchemy": (),
    "pyyaml": (),
    "click": (),
    "pytest": ("py>=1.8.2", "packaging", "attrs>=17.4.0"),
}
"""A small seed table of well-known packages and their declared requirements."""


class DependencyResolver:
    """Owns a `DependencyGraph` and answers questions about it.

    Every structural mutation is serialized through a single writer lock. Queries are
    answered by the pure functions in `libdeps.resolution` against an immutable
    snapshot of the graph, so they never observe a half-applied mutation.
    """

    def __init__(self, graph: DependencyGraph | None = None) -> None:
        self._lock = threading.RLock()
        self._graph: DependencyGraph = graph if graph is not None else DependencyGraph()
        self._metadata: dict[str, InstallationRecord] = {}

    @classmethod
    def with_common_packages(cls) -> DependencyResolver:
        """Create a resolver pre-seeded with `COMMON_PACKAGES`."""
        resolver = cls()
        for library, requirements in COMMON_PACKAGES.items():
            resolver.add_dependency(library, requirements)
        return resolver

    def snapshot(self) -> DependencyGraph:
        with self._lock:
            return self._graph.snapshot()

    # Mutators

    def add_dependency(self, library: str | None, dependencies: Iterable[str] | None) -> None:
        """Replace the direct dependencies of `library`.

        A blank library name or a `None` dependency list is ignored. Calling this again
        with the same input leaves the graph unchanged.
        """
        if dependencies is None or not normalize_name(library):
            return
        with self._lock:
            self._graph.set_dependencies(library, dependencies)  # type: ignore[arg-type]

    def add_library(self, record: InstallationRecord) -> None:
        """Register an installed library's declared requirements and cache its metadata.

        A record without requirements does not replace requirements already known for
        the library.
        """
        name = normalize_name(record.name)
        if not name:
            return
        with self._lock:
            if record.dependencies or name not in self._graph:
                self._graph.set_dependencies(name, record.dependencies)
            self._metadata[name] = record

    def get_library(self, library: str) -> InstallationRecord | None:
        with self._lock:
            return self._metadata.get(normalize_name(library))

    def resolve_circular_dependencies(
        self, confirm: Callable[[RemovedEdge], bool] | None = None
    ) -> list[RemovedEdge]:
        """Break every dependency cycle by removing the edge that closes it.

        Args:
            confirm: Optional callback asked before each edge is removed; returning
                False keeps the edge (and the cycle it closes)

        Returns:
            The removed edges

        """
        with self._lock:
            return resolution.break_cycles(self._graph, confirm)

    def remove_unused_dependencies(self, kept: Iterable[str]) -> list[str]:
        """Delete every library that is not kept and not required by a kept library.

        Returns:
            The removed library names, sorted

        """
        with self._lock:
            unused = resolution.unused_libraries(self._graph, kept)
            if unused:
                self._graph.remove_libraries(unused)
                for library in unused:
                    self._metadata.pop(library, None)
                logger.info("Removed %d unused libraries from the dependency graph", len(unused))
        return sorted(unused)

    def load_dependency_graph(self, mapping: Mapping[str, Iterable[str]]) -> None:
        """Replace the whole graph with the given ``library -> requirements`` mapping."""
        graph = DependencyGraph.from_mapping(mapping)
        with self._lock:
            self._graph = graph
            self._metadata = {name: record for name, record in self._metadata.items() if name in graph}

    def clear(self) -> None:
        with self._lock:
            self._graph = DependencyGraph()
            self._metadata.clear()

    # Queries

    def resolve_dependencies(
        self,
        library: str,
        depth_limit: int = resolution.DEFAULT_DEPTH_LIMIT,
        visited: Iterable[str] | None = None,
    ) -> set[str]:
        return resolution.resolve_dependencies(self.snapshot(), library, depth_limit, visited)

    def has_circular_dependencies(self, library: str) -> bool:
        return resolution.has_circular_dependencies(self.snapshot(), library)

    def circular_libraries(self) -> set[str]:
        return resolution.circular_libraries(self.snapshot())

    def topological_sort(self) -> list[str]:
        return resolution.topological_sort(self.snapshot())

    def detect_conflicts(self) -> list[DependencyConflict]:
        """Report dependencies shared by two or more libraries (see `resolution.detect_conflicts`)."""
        return resolution.detect_conflicts(self.snapshot())

    def get_affected_libraries(self, library: str) -> set[str]:
        return resolution.affected_libraries(self.snapshot(), library)

    def get_dependency_graph(self) -> dict[str, set[str]]:
        return self.snapshot().to_mapping()

    def get_statistics(self) -> DependencyStatistics:
        return resolution.statistics(self.snapshot())

    @staticmethod
    def filter_compatible(
        records: Iterable[InstallationRecord], python_version: str | None
    ) -> list[InstallationRecord]:
        return resolution.filter_compatible(records, python_version)

    def to_dot(self, library: str | None = None) -> Digraph:
        """Render the graph (or the dependency closure of `library`) with Graphviz.

        Libraries that are part of, or depend into, a cycle are drawn as octagons.
        """
        graph = self.snapshot()
        if library is not None:
            name = normalize_name(library)
            nodes = resolution.resolve_dependencies(graph, name) | ({name} if name in graph else set())
        else:
            nodes = set(graph.nodes)
        circular = resolution.circular_libraries(graph)
        dot = Digraph(name="dependencies")
        for node in sorted(nodes):
            if node in circular:
                dot.node(node, shape="octagon")
            else:
                dot.node(node)
        for source, dest in sorted(graph.edges):
            if source in nodes and dest in nodes:
                constraint = graph.constraint(source, dest)
                if constraint:
                    dot.edge(source, dest, label=constraint)
                else:
                    dot.edge(source, dest)
        return dot
