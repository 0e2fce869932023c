"""Dependency graph implementation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import networkx as nx

from .models import LibrarySpec, normalize_name

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)


class DependencyGraph(nx.DiGraph):
    """Directed graph of libraries.

    An edge ``a -> b`` means that library ``a`` directly depends on ``b``; the
    edge's ``spec`` attribute holds the parsed `LibrarySpec` it was declared with.

    `dependents` is the reverse (transpose) graph. It is derived data: every
    structural mutation made through this class rebuilds it from scratch.
    """

    def __init__(self, *args: object, **kwargs: object) -> None:
        """Initialize the graph and its (empty) reverse graph."""
        super().__init__(*args, **kwargs)
        self.dependents: nx.DiGraph = nx.DiGraph()
        self.rebuild_dependents()

    def rebuild_dependents(self) -> None:
        """Recompute the reverse graph as the exact transpose of this graph."""
        dependents = nx.DiGraph()
        dependents.add_nodes_from(self.nodes)
        dependents.add_edges_from((dependency, library) for library, dependency in self.edges)
        self.dependents = dependents

    def set_dependencies(self, library: str, requirements: Iterable[str]) -> set[str]:
        """Replace (not merge) the direct dependencies of `library`.

        Args:
            library: Library name; it is normalized before use
            requirements: Raw requirement strings, e.g. ``"numpy>=1.18.5"``

        Returns:
            The normalized dependency names now recorded for `library`

        """
        names = self._replace_dependencies(normalize_name(library), requirements)
        self.rebuild_dependents()
        return names

    def _replace_dependencies(self, name: str, requirements: Iterable[str]) -> set[str]:
        specs: dict[str, LibrarySpec] = {}
        for requirement in requirements:
            spec = LibrarySpec.parse(requirement)
            if spec is None:
                logger.debug("Ignoring requirement %r of %s: no library name", requirement, name)
                continue
            specs[spec.name] = spec
        if name in self:
            self.remove_edges_from(list(self.out_edges(name)))
        else:
            self.add_node(name)
        self.add_edges_from((name, dep, {"spec": spec}) for dep, spec in specs.items())
        return set(specs)

    def remove_libraries(self, libraries: Iterable[str]) -> None:
        """Delete libraries from both graphs, dropping every edge that touches them."""
        self.remove_nodes_from([normalize_name(library) for library in libraries])
        self.rebuild_dependents()

    def remove_dependency_edges(self, edges: Iterable[tuple[str, str]]) -> None:
        self.remove_edges_from(list(edges))
        self.rebuild_dependents()

    def dependencies_of(self, library: str) -> set[str]:
        """Get the direct dependencies of `library` (empty if unknown)."""
        name = normalize_name(library)
        if name not in self:
            return set()
        return set(self.successors(name))

    def dependents_of(self, library: str) -> set[str]:
        """Get the libraries that directly depend on `library` (empty if unknown)."""
        name = normalize_name(library)
        if name not in self.dependents:
            return set()
        return set(self.dependents.successors(name))

    def constraint(self, library: str, dependency: str) -> str:
        """Get the raw version constraint `library` declared for `dependency`."""
        data = self.get_edge_data(library, dependency)
        if not data or data.get("spec") is None:
            return ""
        return data["spec"].version_constraint

    def to_mapping(self) -> dict[str, set[str]]:
        """Export the forward graph as a plain ``library -> dependencies`` mapping."""
        return {library: set(self.successors(library)) for library in self.nodes}

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Iterable[str]]) -> DependencyGraph:
        graph = cls()
        for library, requirements in mapping.items():
            name = normalize_name(library)
            if name:
                graph._replace_dependencies(name, requirements or ())
        graph.rebuild_dependents()
        return graph

    def snapshot(self) -> DependencyGraph:
        """Return an immutable copy of this graph (and its reverse) for concurrent reads."""
        graph = DependencyGraph()
        graph.add_nodes_from(self.nodes(data=True))
        graph.add_edges_from(self.edges(data=True))
        graph.rebuild_dependents()
        nx.freeze(graph.dependents)
        return nx.freeze(graph)
