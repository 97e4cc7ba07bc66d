"""
Graph Compiler - validates a project graph and orders it for execution.

compile_graph() is pure: it reads the project and the registry and either
returns a CompiledGraph or raises. Checks, in order:

1. Duplicate node ids and unknown entry node ids
2. Every node resolves to a registered (kind, version)
3. Every node's config (merged with defaults) passes its config schema
4. Every edge connects existing nodes through existing, type-compatible ports
5. At most one edge feeds each input port
6. No cycles (three-color DFS)

The execution order is a topological sort that breaks ties by declaration
order, so the same graph always compiles to the same order.
"""

import heapq
import logging
from dataclasses import dataclass, field
from typing import Any

from studio.errors import CycleError, GraphValidationError, TypeMismatchError
from studio.graph.config_schema import merge_node_config_with_defaults, validate_node_config
from studio.graph.node import NodeDefinition
from studio.graph.registry import NodeRegistry
from studio.graph.types import is_port_compatible
from studio.schemas.project import StudioEdge, StudioNode, StudioProject

logger = logging.getLogger(__name__)


@dataclass
class CompiledNode:
    node: StudioNode
    definition: NodeDefinition
    config: dict[str, Any]
    inbound_edges: list[StudioEdge] = field(default_factory=list)
    dependency_ids: list[str] = field(default_factory=list)


@dataclass
class CompiledGraph:
    """Execution plan for a project graph."""

    execution_order: list[str]
    nodes_by_id: dict[str, CompiledNode]


def compile_graph(project: StudioProject, registry: NodeRegistry) -> CompiledGraph:
    """
    Compile ``project.graph`` against ``registry``.

    Raises:
        GraphValidationError: unknown kind/version, bad config, duplicate ids,
            dangling edges, or more than one edge into an input port
        TypeMismatchError: an edge uses an unknown port or incompatible types
        CycleError: the graph has a cycle
    """
    graph = project.graph
    nodes_by_id: dict[str, CompiledNode] = {}
    declaration_index: dict[str, int] = {}

    for index, node in enumerate(graph.nodes):
        if node.id in nodes_by_id:
            raise GraphValidationError(f'Duplicate node id "{node.id}"')
        definition = registry.get(node.kind, node.version)
        if definition is None:
            raise GraphValidationError(
                f'Node "{node.id}" uses unknown kind {node.kind}@{node.version}'
            )

        config = merge_node_config_with_defaults(definition, node.config)
        result = validate_node_config(definition, config)
        if not result.is_valid:
            raise GraphValidationError(f'Node "{node.id}" has invalid config: {result.error}')

        nodes_by_id[node.id] = CompiledNode(node=node, definition=definition, config=config)
        declaration_index[node.id] = index

    for entry_id in graph.entry_node_ids:
        if entry_id not in nodes_by_id:
            raise GraphValidationError(f'Entry node "{entry_id}" does not exist')

    feeding_edge: dict[tuple[str, str], str] = {}
    for edge in graph.edges:
        source = nodes_by_id.get(edge.from_node_id)
        target = nodes_by_id.get(edge.to_node_id)
        if source is None or target is None:
            missing = edge.from_node_id if source is None else edge.to_node_id
            raise GraphValidationError(f'Edge "{edge.id}" references missing node "{missing}"')

        out_port = source.definition.output_port(edge.from_port_id)
        in_port = target.definition.input_port(edge.to_port_id)
        if out_port is None or in_port is None:
            raise TypeMismatchError(
                edge.id,
                out_port.type if out_port else "unknown",
                in_port.type if in_port else "unknown",
                detail=(
                    f'no output port "{edge.from_port_id}" on {source.node.kind}'
                    if out_port is None
                    else f'no input port "{edge.to_port_id}" on {target.node.kind}'
                ),
            )
        if not is_port_compatible(out_port.type, in_port.type):
            raise TypeMismatchError(edge.id, out_port.type, in_port.type)

        port_key = (edge.to_node_id, edge.to_port_id)
        if port_key in feeding_edge:
            raise GraphValidationError(
                f'Input port "{edge.to_port_id}" of node "{edge.to_node_id}" is fed by more '
                f'than one edge ("{feeding_edge[port_key]}", "{edge.id}")'
            )
        feeding_edge[port_key] = edge.id

        target.inbound_edges.append(edge)
        if edge.from_node_id not in target.dependency_ids:
            target.dependency_ids.append(edge.from_node_id)

    _detect_cycles(nodes_by_id, declaration_index)
    order = _topological_order(nodes_by_id, declaration_index)

    logger.debug(f"Compiled graph with {len(order)} nodes", extra={"event": "graph_compiled"})
    return CompiledGraph(execution_order=order, nodes_by_id=nodes_by_id)


def _detect_cycles(nodes_by_id: dict[str, CompiledNode], declaration_index: dict[str, int]) -> None:
    white, gray, black = 0, 1, 2
    color = {node_id: white for node_id in nodes_by_id}
    dependents: dict[str, list[str]] = {node_id: [] for node_id in nodes_by_id}
    for node_id, compiled in nodes_by_id.items():
        for dependency in compiled.dependency_ids:
            dependents[dependency].append(node_id)

    for start in sorted(nodes_by_id, key=declaration_index.__getitem__):
        if color[start] != white:
            continue
        path = [start]
        stack = [(start, iter(dependents[start]))]
        color[start] = gray
        while stack:
            node_id, children = stack[-1]
            child = next(children, None)
            if child is None:
                color[node_id] = black
                stack.pop()
                path.pop()
            elif color[child] == gray:
                cycle = path[path.index(child) :] + [child]
                raise CycleError(cycle)
            elif color[child] == white:
                color[child] = gray
                path.append(child)
                stack.append((child, iter(dependents[child])))


def _topological_order(
    nodes_by_id: dict[str, CompiledNode], declaration_index: dict[str, int]
) -> list[str]:
    remaining = {node_id: len(c.dependency_ids) for node_id, c in nodes_by_id.items()}
    dependents: dict[str, list[str]] = {node_id: [] for node_id in nodes_by_id}
    for node_id, compiled in nodes_by_id.items():
        for dependency in compiled.dependency_ids:
            dependents[dependency].append(node_id)

    ready = [(declaration_index[n], n) for n, count in remaining.items() if count == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        _, node_id = heapq.heappop(ready)
        order.append(node_id)
        for dependent in dependents[node_id]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, (declaration_index[dependent], dependent))
    return order
