"""Graph algorithms over a `DependencyGraph`.

Every function here only reads the graph it is given (except `break_cycles`),
so they are normally called on an immutable snapshot and may run concurrently.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING

import networkx as nx

from .models import DependencyConflict, DependencyStatistics, RemovedEdge, normalize_name

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .graph import DependencyGraph
    from .models import InstallationRecord

logger = logging.getLogger(__name__)

DEFAULT_DEPTH_LIMIT = 10
WILDCARD_PYTHON_VERSIONS = frozenset({"all", "*", ""})


def _direct(graph: DependencyGraph, library: str) -> list[str]:
    if library not in graph:
        return []
    return sorted(graph.successors(library))


def resolve_dependencies(
    graph: DependencyGraph,
    library: str,
    depth_limit: int = DEFAULT_DEPTH_LIMIT,
    visited: Iterable[str] | None = None,
) -> set[str]:
    """Compute the transitive dependencies of `library`, at most `depth_limit` levels deep.

    Each recursive branch works on its own copy of `visited`, so cycle protection is
    local to a path: shared ("diamond") sub-graphs may be walked more than once, but
    the result never holds duplicates.

    Args:
        graph: Graph to read
        library: Library whose dependencies are resolved
        depth_limit: Maximum recursion depth; ``1`` yields only direct dependencies
        visited: Libraries already on the current path

    Returns:
        The set of dependency names (order is meaningless)

    """
    name = normalize_name(library)
    found: set[str] = set()
    path = {normalize_name(v) for v in visited or ()}
    if depth_limit <= 0 or not name or name in path:
        return found
    path.add(name)
    for dependency in _direct(graph, name):
        if dependency in found:
            continue
        found.add(dependency)
        found.update(resolve_dependencies(graph, dependency, depth_limit - 1, path))
    return found


def has_circular_dependencies(graph: DependencyGraph, library: str) -> bool:
    """Check whether `library` is part of, or depends into, a dependency cycle."""
    name = normalize_name(library)
    if not name:
        return False
    visiting: set[str] = {name}
    done: set[str] = set()
    stack = [(name, iter(_direct(graph, name)))]
    while stack:
        node, dependencies = stack[-1]
        for dependency in dependencies:
            if dependency in visiting:
                return True
            if dependency not in done:
                visiting.add(dependency)
                stack.append((dependency, iter(_direct(graph, dependency))))
                break
        else:
            stack.pop()
            visiting.discard(node)
            done.add(node)
    return False


def circular_libraries(graph: DependencyGraph) -> set[str]:
    return {library for library in graph.nodes if has_circular_dependencies(graph, library)}


def topological_sort(graph: DependencyGraph) -> list[str]:
    """Order libraries so that every dependency precedes the libraries that require it.

    The walk stops at the first cycle it meets and only the order built up to that
    point is returned, so the result is partial whenever the graph is cyclic. Break
    cycles first (see `break_cycles`) when a complete order is needed.
    """
    ordered: list[str] = []
    visiting: set[str] = set()
    done: set[str] = set()
    for library in sorted(graph.nodes):
        if library in done:
            continue
        visiting.add(library)
        stack = [(library, iter(_direct(graph, library)))]
        while stack:
            node, dependencies = stack[-1]
            for dependency in dependencies:
                if dependency in visiting:
                    logger.warning(
                        "Found a dependency cycle while ordering libraries; returning a partial order of %d libraries",
                        len(ordered),
                    )
                    return ordered
                if dependency not in done:
                    visiting.add(dependency)
                    stack.append((dependency, iter(_direct(graph, dependency))))
                    break
            else:
                # every dependency of `node` is already ordered
                stack.pop()
                visiting.discard(node)
                done.add(node)
                ordered.append(node)
    return ordered


def detect_conflicts(graph: DependencyGraph) -> list[DependencyConflict]:
    """Report every dependency that two or more libraries require directly.

    Version constraints are not evaluated: two libraries asking for ``six>=1.5.0``
    and ``six<2`` are reported the same way as two compatible requests.
    """
    required_by: dict[str, set[str]] = defaultdict(set)
    for library, dependency in graph.edges:
        required_by[dependency].add(library)
    return [
        DependencyConflict(
            dependency=dependency,
            libraries=frozenset(libraries),
            constraints={library: graph.constraint(library, dependency) for library in libraries},
        )
        for dependency, libraries in sorted(required_by.items())
        if len(libraries) > 1
    ]


def affected_libraries(graph: DependencyGraph, library: str) -> set[str]:
    """Collect every library that transitively depends on `library`.

    `library` itself is only included when a cycle leads back to it.
    """
    name = normalize_name(library)
    affected: set[str] = set()
    expanded: set[str] = set()
    stack = [name] if name else []
    while stack:
        node = stack.pop()
        if node in expanded:
            continue
        expanded.add(node)
        for dependent in sorted(graph.dependents_of(node)):
            if dependent not in affected:
                affected.add(dependent)
                stack.append(dependent)
    return affected


def unused_libraries(graph: DependencyGraph, kept: Iterable[str]) -> set[str]:
    """Find the libraries that are neither kept nor (transitively) required by a kept library."""
    keep = {normalize_name(library) for library in kept} - {""}
    required: set[str] = set()
    for library in keep:
        if library in graph.dependents:
            # walking the reverse graph backwards from a kept library reaches what it requires
            required |= nx.ancestors(graph.dependents, library)
    return set(graph.nodes) - keep - required


def find_cycle_edges(
    graph: DependencyGraph,
    confirm: Callable[[RemovedEdge], bool] | None = None,
) -> list[RemovedEdge]:
    """Choose the dependency edges whose removal leaves `graph` acyclic.

    Strongly connected components are processed in sorted order; within each one the
    edge closing the first cycle found is chosen, repeatedly, until the component is
    acyclic. If `confirm` is given it is asked about every edge and a refusal leaves
    the rest of that component untouched. `graph` itself is not modified.
    """
    chosen: list[RemovedEdge] = []
    components = sorted(nx.strongly_connected_components(graph), key=min)
    for component in components:
        working = nx.DiGraph(graph.subgraph(component))
        while True:
            try:
                cycle = nx.find_cycle(working, source=sorted(component))
            except nx.NetworkXNoCycle:
                break
            library, dependency = cycle[-1][0], cycle[-1][1]
            edge = RemovedEdge(library=library, dependency=dependency)
            if confirm is not None and not confirm(edge):
                logger.warning("Removal of dependency edge %s was declined; the cycle remains", edge)
                break
            working.remove_edge(library, dependency)
            chosen.append(edge)
    return chosen


def break_cycles(
    graph: DependencyGraph,
    confirm: Callable[[RemovedEdge], bool] | None = None,
) -> list[RemovedEdge]:
    """Remove dependency edges until `graph` has no cycles left (see `find_cycle_edges`).

    This mutates `graph`.

    Returns:
        The removed edges, in removal order

    """
    removed = find_cycle_edges(graph, confirm)
    for edge in removed:
        logger.warning(
            "Broke a dependency cycle by removing %s from the dependencies of %s", edge.dependency, edge.library
        )
    if removed:
        graph.remove_dependency_edges((edge.library, edge.dependency) for edge in removed)
    return removed


def statistics(graph: DependencyGraph) -> DependencyStatistics:
    most_name = ""
    most_count = 0
    no_dependencies = 0
    for library in sorted(graph.nodes):
        count = graph.out_degree(library)
        if count == 0:
            no_dependencies += 1
        if count > most_count:
            most_count = count
            most_name = library
    return DependencyStatistics(
        total_libraries=graph.number_of_nodes(),
        total_dependencies=graph.number_of_edges(),
        libraries_with_no_dependencies=no_dependencies,
        most_dependent_library_count=most_count,
        most_dependent_library_name=most_name,
    )


def is_compatible(record: InstallationRecord, python_version: str | None) -> bool:
    if python_version is None or python_version.strip().lower() in WILDCARD_PYTHON_VERSIONS:
        return True
    return python_version in record.python_versions


def filter_compatible(records: Iterable[InstallationRecord], python_version: str | None) -> list[InstallationRecord]:
    """Keep only the records that declare support for `python_version`."""
    return [record for record in records if is_compatible(record, python_version)]
