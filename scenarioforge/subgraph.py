"""
Nested graphs.

A SUBGRAPH node whose ``data.subgraphId`` names a registered graph runs that
graph as one step of its parent. ``data.portMappings`` wire the node's ports
to nodes inside the child graph: a mapping whose ``externalPort`` is one of
the node's input ports injects that input into ``internalNodeId``; one whose
``externalPort`` is an output port reads the child node's output back out.
"""
import logging
from contextvars import ContextVar
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from .errors import EvaluationError, ExecutionError, GraphReferenceError
from .executor import ExecutionPlan
from .expression import ExpressionContext, evaluate
from .graph import _replace, get_node, generate_id
from .models import (
    Graph, Node, NodeType, Port, PortMapping, Position, SubgraphData,
    ValidationIssue, ValidationResult,
)

logger = logging.getLogger(__name__)

MAX_HIERARCHY_DEPTH = 100

# Graph ids of the subgraphs currently executing, outermost first
_active: ContextVar[Tuple[str, ...]] = ContextVar("active_subgraphs", default=())


class SubgraphRegistry:
    """Graphs that SUBGRAPH nodes can reference, with one cached plan each."""

    def __init__(self):
        self._graphs: Dict[str, Graph] = {}
        self._plans: Dict[str, ExecutionPlan] = {}

    def register(self, graph: Graph) -> None:
        self._graphs[graph.id] = graph
        self._plans.pop(graph.id, None)

    def unregister(self, graph_id: str) -> None:
        self._graphs.pop(graph_id, None)
        self._plans.pop(graph_id, None)

    def get(self, graph_id: str) -> Optional[Graph]:
        return self._graphs.get(graph_id)

    def plan(self, graph_id: str) -> ExecutionPlan:
        if graph_id not in self._plans:
            graph = self._graphs.get(graph_id)
            if graph is None:
                raise GraphReferenceError(f"Subgraph '{graph_id}' not found")
            self._plans[graph_id] = ExecutionPlan(graph)
        return self._plans[graph_id]

    def clear(self) -> None:
        self._graphs.clear()
        self._plans.clear()

    def __contains__(self, graph_id: str) -> bool:
        return graph_id in self._graphs

    def __len__(self) -> int:
        return len(self._graphs)


default_registry = SubgraphRegistry()


def register_subgraph(graph: Graph, registry: Optional[SubgraphRegistry] = None) -> None:
    (registry or default_registry).register(graph)


def _find_port(ports: Iterable[Port], ref: str) -> Optional[Port]:
    return next((p for p in ports if ref in (p.id, p.name)), None)


def _split_mappings(node: Node, data: SubgraphData) -> Tuple[List[PortMapping], List[PortMapping]]:
    inputs, outputs = [], []
    for m in data.port_mappings:
        if _find_port(node.input_ports, m.external_port) is not None:
            inputs.append(m)
        else:
            outputs.append(m)
    return inputs, outputs


def _transform(mapping: PortMapping, value: Any, ctx: ExpressionContext) -> Any:
    if not mapping.transform:
        return value
    return evaluate(mapping.transform, replace(ctx, node={"value": value}, inputs={"value": value}))


def execute_subgraph_node(
    node: Node,
    data: SubgraphData,
    inputs: Dict[str, Any],
    ctx: ExpressionContext,
    registry: Optional[SubgraphRegistry] = None,
) -> Dict[str, Any]:
    """
    Run the graph referenced by a SUBGRAPH node and return the node's outputs.

    The child sees only the parent params named in ``inheritedParams`` plus
    ``instanceParams``. It shares the parent's random stream and time, and
    its iteration unless ``shareIterationState`` is false. Without output
    mappings the node emits ``{"output": {<OUTPUT node name>: outputs}}``.
    """
    registry = registry or default_registry
    graph_id = data.subgraph_id
    active = _active.get()
    if graph_id in active:
        chain = " -> ".join((*active, graph_id))
        raise EvaluationError(f"Circular subgraph reference: {chain}", node.id)

    plan = registry.plan(graph_id)
    input_mappings, output_mappings = _split_mappings(node, data)

    injections: Dict[str, Dict[str, Any]] = {}
    for m in input_mappings:
        port = _find_port(node.input_ports, m.external_port)
        value = inputs.get(port.name)
        if value is None:
            continue
        inner = plan.nodes.get(m.internal_node_id)
        if inner is None:
            raise EvaluationError(
                f"Port mapping '{m.external_port}' targets unknown node '{m.internal_node_id}'", node.id)
        target = _find_port(inner.input_ports, m.internal_port)
        port_id = target.id if target else m.internal_port
        injections.setdefault(inner.id, {})[port_id] = _transform(m, value, ctx)

    params = {k: ctx.params[k] for k in data.inherited_params if k in ctx.params}
    params.update(data.instance_params)

    token = _active.set(active + (graph_id,))
    try:
        outputs, _ = plan.execute(
            params,
            iteration=ctx.iteration if data.share_iteration_state else 0,
            time=ctx.time,
            rng=ctx.rng,
            injections=injections,
        )
    except ExecutionError as e:
        raise EvaluationError(f"Subgraph '{plan.graph.name}' failed: {e}", node.id) from e
    finally:
        _active.reset(token)

    if not output_mappings:
        return {"output": {n.name: outputs[n.id] for n in plan.output_nodes}}

    result: Dict[str, Any] = {}
    for m in output_mappings:
        inner = plan.nodes.get(m.internal_node_id)
        if inner is None:
            raise EvaluationError(
                f"Port mapping '{m.external_port}' reads unknown node '{m.internal_node_id}'", node.id)
        inner_outputs = outputs[inner.id]
        port = _find_port(inner.output_ports, m.internal_port)
        key = port.name if port else m.internal_port
        if key in inner_outputs:
            value = inner_outputs[key]
        elif len(inner_outputs) == 1:
            value = next(iter(inner_outputs.values()))
        else:
            value = None
        external = _find_port(node.output_ports, m.external_port)
        result[external.name if external else m.external_port] = _transform(m, value, ctx)
    return result


def _references(graph: Graph) -> List[Tuple[Node, Optional[SubgraphData]]]:
    refs = []
    for node in graph.nodes:
        if node.type != NodeType.SUBGRAPH or not node.data.get("subgraphId"):
            continue
        try:
            refs.append((node, SubgraphData.model_validate(node.data)))
        except ValidationError:
            refs.append((node, None))
    return refs


def _circular_path(graph_id: str, registry: SubgraphRegistry, path: Tuple[str, ...]) -> Optional[List[str]]:
    if graph_id in path:
        return [*path, graph_id]
    graph = registry.get(graph_id)
    if graph is None:
        return None
    for _, data in _references(graph):
        if data is None:
            continue
        found = _circular_path(data.subgraph_id, registry, (*path, graph_id))
        if found:
            return found
    return None


def validate_subgraph_structure(graph: Graph, registry: Optional[SubgraphRegistry] = None) -> ValidationResult:
    """
    Check every SUBGRAPH reference in ``graph``: the referenced graph is
    registered, each port mapping names real ports on both sides, and no
    chain of references leads back to a graph already on the chain.
    """
    registry = registry or default_registry
    errors: List[ValidationIssue] = []

    def error(code: str, message: str, node: Node) -> None:
        errors.append(ValidationIssue(code=code, message=message, node_id=node.id))

    for node, data in _references(graph):
        if data is None:
            error("INVALID_SUBGRAPH_DATA", f"Subgraph node '{node.name}' has invalid data", node)
            continue
        child = registry.get(data.subgraph_id)
        if child is None:
            error("MISSING_SUBGRAPH", f"Subgraph '{data.subgraph_id}' is not registered", node)
            continue
        children = {n.id: n for n in child.nodes}
        for m in data.port_mappings:
            is_input = _find_port(node.input_ports, m.external_port) is not None
            if not is_input and _find_port(node.output_ports, m.external_port) is None:
                error("INVALID_PORT_MAPPING",
                      f"Node '{node.name}' has no port '{m.external_port}'", node)
                continue
            inner = children.get(m.internal_node_id)
            if inner is None:
                error("INVALID_PORT_MAPPING",
                      f"Mapping '{m.external_port}' references non-existent node '{m.internal_node_id}'", node)
                continue
            if is_input:
                ok = _find_port(inner.input_ports, m.internal_port) is not None
            else:
                ok = inner.type == NodeType.OUTPUT or _find_port(inner.output_ports, m.internal_port) is not None
            if not ok:
                error("INVALID_PORT_MAPPING",
                      f"Mapping '{m.external_port}' references non-existent port '{m.internal_port}'", node)

        cycle = _circular_path(data.subgraph_id, registry, (graph.id,))
        if cycle:
            error("CIRCULAR_SUBGRAPH", f"Circular subgraph reference: {' -> '.join(cycle)}", node)

    return ValidationResult(valid=not errors, errors=errors)


def get_hierarchy_depth(
    graph: Graph,
    registry: Optional[SubgraphRegistry] = None,
    max_depth: int = MAX_HIERARCHY_DEPTH,
) -> int:
    """Levels of nesting below ``graph`` (0 when it holds no subgraphs)."""
    registry = registry or default_registry
    depth = 0
    if max_depth <= 0:
        return depth
    for _, data in _references(graph):
        child = registry.get(data.subgraph_id) if data else None
        if child is not None:
            depth = max(depth, get_hierarchy_depth(child, registry, max_depth - 1) + 1)
    return depth


def expand_subgraph_inline(
    graph: Graph,
    subgraph_node_id: str,
    registry: Optional[SubgraphRegistry] = None,
    prefix: Optional[str] = None,
) -> Graph:
    """
    Replace a SUBGRAPH node by a copy of the graph it references.

    Copied ids are prefixed (default ``"<node id>_"``) and positions are
    offset by the node's position. Edges into and out of the node are
    reconnected through its port mappings; edges on unmapped ports are
    dropped. The child's params become defaults under the parent's;
    ``instanceParams`` do not carry over to the expanded nodes.
    """
    registry = registry or default_registry
    node = get_node(graph, subgraph_node_id)
    if node is None:
        raise GraphReferenceError(f"Node '{subgraph_node_id}' not found")
    data = SubgraphData.model_validate(node.data)
    child = registry.get(data.subgraph_id) if data.subgraph_id else None
    if child is None:
        raise GraphReferenceError(f"Subgraph '{data.subgraph_id}' not found")
    prefix = prefix if prefix is not None else f"{node.id}_"

    def moved(n: Node) -> Node:
        return n.model_copy(update={
            "id": prefix + n.id,
            "position": Position(x=node.position.x + n.position.x, y=node.position.y + n.position.y),
            "input_ports": [p.model_copy(update={"id": prefix + p.id}) for p in n.input_ports],
            "output_ports": [p.model_copy(update={"id": prefix + p.id}) for p in n.output_ports],
        }, deep=True)

    nodes = [n for n in graph.nodes if n.id != node.id] + [moved(n) for n in child.nodes]
    edges = [e for e in graph.edges if node.id not in (e.source_node_id, e.target_node_id)]
    edges += [
        e.model_copy(update={
            "id": prefix + e.id,
            "source_node_id": prefix + e.source_node_id,
            "source_port_id": prefix + e.source_port_id,
            "target_node_id": prefix + e.target_node_id,
            "target_port_id": prefix + e.target_port_id,
        }, deep=True)
        for e in child.edges
    ]

    children = {n.id: n for n in child.nodes}
    input_mappings, output_mappings = _split_mappings(node, data)
    for e in graph.edges:
        if e.target_node_id == node.id:
            port = node.input_port(e.target_port_id)
            for m in input_mappings:
                inner = children.get(m.internal_node_id)
                target = _find_port(inner.input_ports, m.internal_port) if inner else None
                if port is None or m.external_port not in (port.id, port.name) or target is None:
                    continue
                edges.append(e.model_copy(update={
                    "id": generate_id(),
                    "target_node_id": prefix + inner.id,
                    "target_port_id": prefix + target.id,
                    "transform_function": m.transform or e.transform_function,
                }))
        elif e.source_node_id == node.id:
            port = node.output_port(e.source_port_id)
            mapping = next((m for m in output_mappings
                            if port is not None and m.external_port in (port.id, port.name)), None)
            inner = children.get(mapping.internal_node_id) if mapping else None
            source = _find_port(inner.output_ports, mapping.internal_port) if inner else None
            if source is None:
                logger.warning("Dropping edge %s: port has no expandable mapping", e.id)
                continue
            edges.append(e.model_copy(update={
                "id": generate_id(),
                "source_node_id": prefix + inner.id,
                "source_port_id": prefix + source.id,
            }))

    return _replace(graph, nodes=nodes, edges=edges, params={**child.params, **graph.params})
