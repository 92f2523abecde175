"""
Dependency graphs of the source and metric registries.

Registries are processed in (type, priority) order, not in topological
order. The graph is only used to reject cyclic registries when they are
loaded and to point out dependencies that the sort order cannot satisfy.
"""
import logging
from typing import Iterable, List, Set, Tuple

import networkx as nx

from windcube.contracts import DependencyType
from windcube.errors import RegistryCycleError

logger = logging.getLogger(__name__)


def build_source_graph(sources: Iterable) -> nx.DiGraph:
    """Edges run from a dependency to the source that reads it."""
    sources = list(sources)
    graph = nx.DiGraph()
    known_ids = {item.id for item in sources}

    for item in sources:
        graph.add_node(item.id, kind=item.metadata.type.value, priority=item.priority)

    for item in sources:
        for multiplier in item.multipliers:
            if multiplier.id in known_ids:
                graph.add_edge(multiplier.id, item.id, via="multiplier")
        for dependency_id in item.depends_on:
            if dependency_id in known_ids:
                graph.add_edge(dependency_id, item.id, via="transformer")
            else:
                logger.warning(f"[Graph] Source '{item.id}' declares unknown dependency '{dependency_id}'.")

    logger.debug(
        f"[Graph] Source graph built with {graph.number_of_nodes()} nodes and {graph.number_of_edges()} edges."
    )
    return graph


def build_metric_graph(metrics: Iterable, reference_ids: Set[str] = frozenset()) -> nx.DiGraph:
    """
    Edges come from metric-type dependencies and from operations whose target
    id names another metric. Operation ids that are global references are
    resolved as references first, so they do not add an edge.
    """
    metrics = list(metrics)
    graph = nx.DiGraph()
    known_ids = {item.id for item in metrics}

    for item in metrics:
        graph.add_node(item.id, kind=item.metadata.type.value, priority=item.priority)

    for item in metrics:
        for dependency in item.dependencies:
            if dependency.type is DependencyType.METRIC:
                if dependency.id not in known_ids:
                    logger.warning(f"[Graph] Metric '{item.id}' depends on unknown metric '{dependency.id}'.")
                    continue
                graph.add_edge(dependency.id, item.id, via="dependency")
        for operation in item.operations:
            if operation.id in known_ids and operation.id not in reference_ids:
                graph.add_edge(operation.id, item.id, via="operation")

    logger.debug(
        f"[Graph] Metric graph built with {graph.number_of_nodes()} nodes and {graph.number_of_edges()} edges."
    )
    return graph


def assert_acyclic(graph: nx.DiGraph, registry_kind: str) -> List[str]:
    """Returns a topological order of the graph, or raises RegistryCycleError."""
    try:
        return list(nx.topological_sort(graph))
    except nx.NetworkXUnfeasible:
        cycles = [list(cycle) for cycle in nx.simple_cycles(graph)]
        logger.critical(f"[Graph] FATAL: Cycle(s) found in the {registry_kind} registry: {cycles}")
        raise RegistryCycleError(registry_kind, cycles)


def order_violations(graph: nx.DiGraph, processing_order: List[str]) -> List[Tuple[str, str]]:
    """(dependency, dependent) pairs where the dependency is processed later."""
    position = {item_id: index for index, item_id in enumerate(processing_order)}
    return [
        (dependency, dependent)
        for dependency, dependent in graph.edges()
        if position.get(dependency, -1) > position.get(dependent, -1)
    ]
