"""DAG analysis and validation."""
import logging
from collections import Counter
from typing import List, Optional

import networkx as nx

from .expression import validate_expression
from .models import EdgeType, Graph, Node, NodeType, ValidationIssue, ValidationResult

logger = logging.getLogger(__name__)

EXPRESSION_FIELDS = {
    NodeType.TRANSFORMER: "expression",
    NodeType.DECISION: "condition",
    NodeType.CONSTRAINT: "expression",
}


def build_dependency_graph(graph: Graph) -> nx.DiGraph:
    """
    Build the ordering graph for ``graph``.

    Every node is present (with its list position as ``index``); edges are
    the non-FEEDBACK edges whose endpoints both exist. FEEDBACK edges carry
    values across iterations and never order nodes within one.
    """
    G = nx.DiGraph()
    for index, node in enumerate(graph.nodes):
        if node.id not in G:
            G.add_node(node.id, index=index, type=node.type)

    for e in graph.edges:
        if e.type == EdgeType.FEEDBACK:
            continue
        if e.source_node_id in G and e.target_node_id in G:
            G.add_edge(e.source_node_id, e.target_node_id, edge_id=e.id)
    return G


def topological_sort(graph: Graph) -> Optional[List[Node]]:
    """
    Order nodes so that every dependency edge points forward.

    Returns None when the dependency edges contain a cycle or when node ids
    are not unique; a partial order is never returned. Ties are broken by
    position in ``graph.nodes``.
    """
    G = build_dependency_graph(graph)
    try:
        order = list(nx.lexicographical_topological_sort(G, key=lambda n: G.nodes[n]["index"]))
    except nx.NetworkXUnfeasible:
        return None
    if len(order) != len(graph.nodes):
        return None
    by_id = {node.id: node for node in graph.nodes}
    return [by_id[node_id] for node_id in order]


def has_cycle(graph: Graph) -> bool:
    return not nx.is_directed_acyclic_graph(build_dependency_graph(graph))


def detect_cycle(graph: Graph) -> Optional[List[str]]:
    """Return the node ids of one cycle, or None when the graph is acyclic."""
    G = build_dependency_graph(graph)
    try:
        edges = nx.find_cycle(G)
    except nx.NetworkXNoCycle:
        return None
    return [u for u, _ in edges]


def find_cycles(graph: Graph) -> List[List[str]]:
    """Enumerate every elementary cycle as a list of node ids."""
    return [list(cycle) for cycle in nx.simple_cycles(build_dependency_graph(graph))]


def validate_graph(graph: Graph) -> ValidationResult:
    """
    Check graph structure.

    Errors make the graph unusable (duplicate ids, edges pointing at nodes
    or ports that do not exist). Warnings flag suspect but runnable graphs
    (disconnected nodes, dependency cycles, expressions that do not parse).
    """
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    node_counts = Counter(n.id for n in graph.nodes)
    for node_id, count in node_counts.items():
        if count > 1:
            errors.append(ValidationIssue(
                code="DUPLICATE_NODE_ID",
                message=f"Duplicate node ID: {node_id}",
                node_id=node_id,
            ))

    edge_counts = Counter(e.id for e in graph.edges)
    for edge_id, count in edge_counts.items():
        if count > 1:
            errors.append(ValidationIssue(
                code="DUPLICATE_EDGE_ID",
                message=f"Duplicate edge ID: {edge_id}",
                edge_id=edge_id,
            ))

    nodes = {n.id: n for n in graph.nodes}
    for e in graph.edges:
        source = nodes.get(e.source_node_id)
        target = nodes.get(e.target_node_id)
        if source is None:
            errors.append(ValidationIssue(
                code="INVALID_SOURCE_NODE",
                message=f"Edge {e.id} references non-existent source node: {e.source_node_id}",
                edge_id=e.id,
            ))
        elif source.output_port(e.source_port_id) is None:
            errors.append(ValidationIssue(
                code="INVALID_SOURCE_PORT",
                message=f"Edge {e.id} references non-existent output port '{e.source_port_id}' on {source.name}",
                edge_id=e.id,
                node_id=source.id,
            ))
        if target is None:
            errors.append(ValidationIssue(
                code="INVALID_TARGET_NODE",
                message=f"Edge {e.id} references non-existent target node: {e.target_node_id}",
                edge_id=e.id,
            ))
        elif target.input_port(e.target_port_id) is None:
            errors.append(ValidationIssue(
                code="INVALID_TARGET_PORT",
                message=f"Edge {e.id} references non-existent input port '{e.target_port_id}' on {target.name}",
                edge_id=e.id,
                node_id=target.id,
            ))

    connected = set()
    for e in graph.edges:
        connected.add(e.source_node_id)
        connected.add(e.target_node_id)
    for node in graph.nodes:
        if node.id not in connected:
            warnings.append(ValidationIssue(
                code="DISCONNECTED_NODE",
                message=f"Node '{node.name}' is not connected to any other node",
                node_id=node.id,
            ))

    if has_cycle(graph):
        warnings.append(ValidationIssue(
            code="GRAPH_HAS_CYCLE",
            message="Graph contains a cycle among non-feedback edges",
        ))

    for node in graph.nodes:
        field = EXPRESSION_FIELDS.get(node.type)
        expr = node.data.get(field) if field else None
        if isinstance(expr, str) and expr.strip():
            check = validate_expression(expr)
            if not check["valid"]:
                warnings.append(ValidationIssue(
                    code="INVALID_EXPRESSION",
                    message=f"Invalid {field} in '{node.name}': {check['error']}",
                    node_id=node.id,
                ))

    if errors:
        logger.debug("Graph '%s' failed validation with %d error(s)", graph.name, len(errors))
    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)
