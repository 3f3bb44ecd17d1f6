"""
Graph model operations.

Every mutation returns a new Graph value; the input graph is never touched.
Structural mistakes (duplicate ids, dangling references) raise immediately.
"""
import copy
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from .errors import GraphError, GraphReferenceError
from .models import (
    DataType, Edge, EdgeType, Graph, GraphExport, Node, NodeType, Port,
    PortDefinition, Position, utcnow,
)

logger = logging.getLogger(__name__)


def generate_id() -> str:
    return str(uuid.uuid4())


# --- Factories ---

def create_port(
    name: str,
    data_type: DataType = DataType.ANY,
    required: bool = False,
    multiple: bool = False,
    default_value: Any = None,
    port_id: Optional[str] = None,
) -> Port:
    return Port(
        id=port_id or generate_id(),
        name=name,
        data_type=data_type,
        required=required,
        multiple=multiple,
        default_value=default_value,
    )


def _as_port(port: Any) -> Port:
    if isinstance(port, Port):
        return port
    if isinstance(port, PortDefinition):
        return Port(id=generate_id(), **port.model_dump())
    if isinstance(port, dict):
        port = dict(port)
        port.setdefault("id", generate_id())
        return Port.model_validate(port)
    raise GraphError(f"Cannot build a port from {type(port).__name__}")


def create_node(
    node_type: NodeType,
    name: str,
    data: Optional[Dict[str, Any]] = None,
    input_ports: Optional[Iterable[Any]] = None,
    output_ports: Optional[Iterable[Any]] = None,
    position: Optional[Position] = None,
    node_id: Optional[str] = None,
    description: Optional[str] = None,
) -> Node:
    """
    Build a node.

    Ports may be given as Port, PortDefinition (an id is generated) or dict.
    """
    now = utcnow()
    return Node(
        id=node_id or generate_id(),
        type=NodeType(node_type),
        name=name,
        description=description,
        position=position or Position(),
        data=copy.deepcopy(data) if data else {},
        input_ports=[_as_port(p) for p in input_ports or []],
        output_ports=[_as_port(p) for p in output_ports or []],
        created_at=now,
        updated_at=now,
    )


def create_edge(
    source_node_id: str,
    source_port_id: str,
    target_node_id: str,
    target_port_id: str,
    edge_type: EdgeType = EdgeType.DATA_FLOW,
    edge_id: Optional[str] = None,
    **options: Any,
) -> Edge:
    """Build an edge; ``options`` carries weight, condition, transform_function, ..."""
    now = utcnow()
    return Edge(
        id=edge_id or generate_id(),
        source_node_id=source_node_id,
        source_port_id=source_port_id,
        target_node_id=target_node_id,
        target_port_id=target_port_id,
        type=EdgeType(edge_type),
        created_at=now,
        updated_at=now,
        **options,
    )


def create_graph(
    name: str,
    description: Optional[str] = None,
    params: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    graph_id: Optional[str] = None,
) -> Graph:
    now = utcnow()
    return Graph(
        id=graph_id or generate_id(),
        name=name,
        description=description,
        params=copy.deepcopy(params) if params else {},
        metadata=copy.deepcopy(metadata) if metadata else {},
        created_at=now,
        updated_at=now,
    )


# --- Immutable updates ---

def _replace(graph: Graph, **changes: Any) -> Graph:
    changes = copy.deepcopy(changes)
    changes["updated_at"] = utcnow()
    changes["version"] = graph.version + 1
    return graph.model_copy(update=changes, deep=True)


def _apply_updates(model, updates: Dict[str, Any], protected: Tuple[str, ...]):
    values = model.model_dump()
    for key, value in updates.items():
        name = _field_name(type(model), key)
        if name in protected:
            raise GraphError(f"Field '{key}' cannot be updated")
        values[name] = value
    values["updated_at"] = utcnow()
    try:
        return type(model).model_validate(values)
    except ValidationError as e:
        raise GraphError(f"Invalid update: {e}") from e


def _field_name(model_cls, key: str) -> str:
    if key in model_cls.model_fields:
        return key
    for name, info in model_cls.model_fields.items():
        if info.alias == key:
            return name
    raise GraphError(f"Unknown field '{key}' for {model_cls.__name__}")


def update_graph(graph: Graph, **updates: Any) -> Graph:
    """Update top-level graph fields (name, description, params, metadata)."""
    allowed = {"name", "description", "params", "metadata"}
    unknown = set(updates) - allowed
    if unknown:
        raise GraphError(f"Cannot update graph fields: {sorted(unknown)}")
    return _replace(graph, **updates)


def add_node(graph: Graph, node: Node) -> Graph:
    if any(n.id == node.id for n in graph.nodes):
        raise GraphError(f"Node '{node.id}' already exists in graph '{graph.name}'")
    return _replace(graph, nodes=[*graph.nodes, node])


def update_node(graph: Graph, node_id: str, updates: Dict[str, Any]) -> Graph:
    """
    Replace fields of one node.

    ``updates`` keys may be attribute names or their camelCase aliases.
    ``data`` is replaced wholesale, not merged.
    """
    node = get_node(graph, node_id)
    if node is None:
        raise GraphReferenceError(f"Node '{node_id}' not found")
    updated = _apply_updates(node, updates, protected=("id", "created_at"))
    return _replace(graph, nodes=[updated if n.id == node_id else n for n in graph.nodes])


def remove_node(graph: Graph, node_id: str) -> Graph:
    """Remove a node and every edge touching it."""
    if get_node(graph, node_id) is None:
        raise GraphReferenceError(f"Node '{node_id}' not found")
    edges = [
        e for e in graph.edges
        if e.source_node_id != node_id and e.target_node_id != node_id
    ]
    removed = len(graph.edges) - len(edges)
    if removed:
        logger.debug("Removing node %s cascades to %d edge(s)", node_id, removed)
    return _replace(
        graph,
        nodes=[n for n in graph.nodes if n.id != node_id],
        edges=edges,
    )


def add_edge(graph: Graph, edge: Edge) -> Graph:
    source = get_node(graph, edge.source_node_id)
    if source is None:
        raise GraphReferenceError(f"Source node '{edge.source_node_id}' not found")
    target = get_node(graph, edge.target_node_id)
    if target is None:
        raise GraphReferenceError(f"Target node '{edge.target_node_id}' not found")
    if source.output_port(edge.source_port_id) is None:
        raise GraphReferenceError(
            f"Source port '{edge.source_port_id}' not found on node '{source.name}'"
        )
    if target.input_port(edge.target_port_id) is None:
        raise GraphReferenceError(
            f"Target port '{edge.target_port_id}' not found on node '{target.name}'"
        )
    if get_edge(graph, edge.id) is not None:
        raise GraphError(f"Edge '{edge.id}' already exists in graph '{graph.name}'")
    return _replace(graph, edges=[*graph.edges, edge])


def update_edge(graph: Graph, edge_id: str, updates: Dict[str, Any]) -> Graph:
    edge = get_edge(graph, edge_id)
    if edge is None:
        raise GraphReferenceError(f"Edge '{edge_id}' not found")
    updated = _apply_updates(
        edge, updates,
        protected=("id", "created_at", "source_node_id", "source_port_id",
                   "target_node_id", "target_port_id"),
    )
    return _replace(graph, edges=[updated if e.id == edge_id else e for e in graph.edges])


def remove_edge(graph: Graph, edge_id: str) -> Graph:
    if get_edge(graph, edge_id) is None:
        raise GraphReferenceError(f"Edge '{edge_id}' not found")
    return _replace(graph, edges=[e for e in graph.edges if e.id != edge_id])


# --- Queries ---

def get_node(graph: Graph, node_id: str) -> Optional[Node]:
    return next((n for n in graph.nodes if n.id == node_id), None)


def get_edge(graph: Graph, edge_id: str) -> Optional[Edge]:
    return next((e for e in graph.edges if e.id == edge_id), None)


def get_node_input_edges(graph: Graph, node_id: str) -> List[Edge]:
    return [e for e in graph.edges if e.target_node_id == node_id]


def get_node_output_edges(graph: Graph, node_id: str) -> List[Edge]:
    return [e for e in graph.edges if e.source_node_id == node_id]


def get_connected_nodes(graph: Graph, node_id: str) -> Tuple[List[Node], List[Node]]:
    """Return (upstream, downstream) neighbours of ``node_id``."""
    upstream_ids = {e.source_node_id for e in get_node_input_edges(graph, node_id)}
    downstream_ids = {e.target_node_id for e in get_node_output_edges(graph, node_id)}
    upstream = [n for n in graph.nodes if n.id in upstream_ids]
    downstream = [n for n in graph.nodes if n.id in downstream_ids]
    return upstream, downstream


def get_feedback_edges(graph: Graph) -> List[Edge]:
    return [e for e in graph.edges if e.type == EdgeType.FEEDBACK]


# --- Clone / export / import ---

def clone_graph(graph: Graph, new_name: Optional[str] = None) -> Graph:
    """
    Deep copy ``graph`` with every node, port and edge id regenerated.

    Port ids are remapped per node, so graphs that reuse port ids such as
    ``"out"`` on several nodes clone correctly.
    """
    node_ids: Dict[str, str] = {}
    port_ids: Dict[Tuple[str, str, str], str] = {}
    now = utcnow()

    nodes: List[Node] = []
    for node in graph.nodes:
        new_node_id = generate_id()
        node_ids[node.id] = new_node_id
        inputs = []
        for port in node.input_ports:
            new_port = generate_id()
            port_ids[(node.id, "in", port.id)] = new_port
            inputs.append(port.model_copy(update={"id": new_port}, deep=True))
        outputs = []
        for port in node.output_ports:
            new_port = generate_id()
            port_ids[(node.id, "out", port.id)] = new_port
            outputs.append(port.model_copy(update={"id": new_port}, deep=True))
        nodes.append(node.model_copy(
            update={
                "id": new_node_id,
                "input_ports": inputs,
                "output_ports": outputs,
                "created_at": now,
                "updated_at": now,
            },
            deep=True,
        ))

    edges: List[Edge] = []
    for edge in graph.edges:
        if edge.source_node_id not in node_ids or edge.target_node_id not in node_ids:
            logger.warning("Dropping dangling edge %s while cloning '%s'", edge.id, graph.name)
            continue
        edges.append(edge.model_copy(
            update={
                "id": generate_id(),
                "source_node_id": node_ids[edge.source_node_id],
                "target_node_id": node_ids[edge.target_node_id],
                "source_port_id": port_ids.get(
                    (edge.source_node_id, "out", edge.source_port_id), edge.source_port_id),
                "target_port_id": port_ids.get(
                    (edge.target_node_id, "in", edge.target_port_id), edge.target_port_id),
                "created_at": now,
                "updated_at": now,
            },
            deep=True,
        ))

    return graph.model_copy(
        update={
            "id": generate_id(),
            "name": new_name if new_name is not None else f"{graph.name} (Copy)",
            "nodes": nodes,
            "edges": edges,
            "version": 1,
            "created_at": now,
            "updated_at": now,
        },
        deep=True,
    )


def export_graph(graph: Graph) -> GraphExport:
    return GraphExport(graph=graph)


def export_graph_to_json(graph: Graph, indent: Optional[int] = 2) -> str:
    """Serialize ``graph`` inside a versioned ``{version, exportedAt, graph}`` envelope."""
    return export_graph(graph).model_dump_json(by_alias=True, indent=indent)


def import_graph(envelope: GraphExport) -> Graph:
    return clone_graph(envelope.graph, envelope.graph.name)


def import_graph_from_json(text: str) -> Graph:
    """Parse an exported envelope; ids are regenerated to avoid collisions."""
    try:
        envelope = GraphExport.model_validate_json(text)
    except ValidationError as e:
        raise GraphError(f"Invalid graph export format: {e}") from e
    logger.debug("Importing graph '%s' (export version %s)", envelope.graph.name, envelope.version)
    return import_graph(envelope)
