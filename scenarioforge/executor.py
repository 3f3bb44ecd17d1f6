"""Execution pipeline for scenario graphs."""
import logging
import math
from collections import Counter
from dataclasses import replace
from time import perf_counter
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from .dag import topological_sort
from .errors import CycleError, EvaluationError, ExecutionError, ScenarioError
from .expression import ExpressionContext, evaluate, to_number, truthy
from .models import (
    AggregatorData, ConstantData, ConstraintData, ConstraintViolation,
    DecisionData, DistributionData, Edge, EdgeType, ExecutionResult, Graph,
    Node, NodePayload, NodeType, OutputData, OutputNodeResult, Port,
    SubgraphData, TransformerData,
)
from .sampling import SeededRandom, sample_distribution

logger = logging.getLogger(__name__)

ComputeFunction = Callable[[Node, Dict[str, Any], ExpressionContext], Dict[str, Any]]

# Node type -> callable(node, inputs, context) -> {output_key: value}
_registry: Dict[NodeType, ComputeFunction] = {}

PAYLOAD_TYPES = {
    NodeType.CONSTANT: ConstantData,
    NodeType.PARAMETER: ConstantData,
    NodeType.DISTRIBUTION: DistributionData,
    NodeType.TRANSFORMER: TransformerData,
    NodeType.AGGREGATOR: AggregatorData,
    NodeType.DECISION: DecisionData,
    NodeType.CONSTRAINT: ConstraintData,
    NodeType.OUTPUT: OutputData,
    NodeType.SUBGRAPH: SubgraphData,
}


def register_compute_function(node_type, fn: ComputeFunction) -> None:
    """Install (or override) the evaluation function for a node type."""
    _registry[NodeType(node_type)] = fn


def unregister_compute_function(node_type) -> None:
    _registry.pop(NodeType(node_type), None)


def parse_payload(node: Node) -> Optional[NodePayload]:
    cls = PAYLOAD_TYPES.get(node.type)
    if cls is None:
        return None
    try:
        return cls.model_validate(node.data)
    except ValidationError as e:
        raise EvaluationError(f"Invalid {node.type.value} data: {e}", node.id) from e


def _first_input(inputs: Dict[str, Any]) -> Any:
    return next(iter(inputs.values()), None)


def _flat_values(inputs: Dict[str, Any]) -> List[Any]:
    out: List[Any] = []
    for v in inputs.values():
        if isinstance(v, list):
            out.extend(v)
        else:
            out.append(v)
    return out


def _evaluate_field(label: str, expression: str, ctx: ExpressionContext) -> Any:
    try:
        return evaluate(expression, ctx)
    except (ScenarioError, TypeError, ArithmeticError) as e:
        shown = expression if len(expression) <= 50 else expression[:50] + "..."
        raise EvaluationError(f"{label} error: {e}. Expression: {shown}") from e


def _aggregate(node: Node, data: AggregatorData, inputs: Dict[str, Any]) -> float:
    values = [to_number(v) for v in _flat_values(inputs)]
    values = [v for v in values if not math.isnan(v)]
    if not values:
        raise EvaluationError(f"Aggregator '{node.name}' has no numeric inputs", node.id)
    method = data.method.lower()
    if method == "sum":
        return sum(values)
    if method in ("mean", "average"):
        return sum(values) / len(values)
    if method == "min":
        return min(values)
    if method == "max":
        return max(values)
    if method == "product":
        result = 1
        for v in values:
            result *= v
        return result
    if method == "count":
        return len(values)
    logger.warning("Unknown aggregation method %r on '%s', using sum", data.method, node.name)
    return sum(values)


def _constraint(data: ConstraintData, inputs: Dict[str, Any], ctx: ExpressionContext) -> Dict[str, Any]:
    if data.expression:
        raw = _evaluate_field("Constraint", data.expression, ctx)
    else:
        raw = _first_input(inputs)
    if raw is None:
        return {"output": None, "satisfied": True, "violation": 0.0}
    value = to_number(raw)
    violation = 0.0
    output = value
    if data.min is not None and value < data.min:
        violation = data.min - value
        output = data.min if data.clamp else value
    if data.max is not None and value > data.max:
        violation = value - data.max
        output = data.max if data.clamp else value
    return {"output": output, "satisfied": violation == 0, "violation": violation}


def compute_node(
    node: Node,
    inputs: Dict[str, Any],
    ctx: ExpressionContext,
    payload: Optional[NodePayload] = None,
) -> Dict[str, Any]:
    """
    Evaluate one node given its resolved inputs.

    Registered compute functions take precedence over the built-in node
    types, so any type can be overridden.
    """
    fn = _registry.get(node.type)
    if fn is not None:
        result = fn(node, inputs, ctx)
        return result if isinstance(result, dict) else {"output": result}

    if payload is None:
        payload = parse_payload(node)
    node_type = node.type

    if node_type in (NodeType.CONSTANT, NodeType.PARAMETER):
        return {"output": payload.value}

    elif node_type == NodeType.DATA_SOURCE:
        value = node.data.get("value")
        return {"output": value if value is not None else dict(node.data)}

    elif node_type == NodeType.DISTRIBUTION:
        return {"output": sample_distribution(payload, ctx.rng)}

    elif node_type == NodeType.TRANSFORMER:
        if payload.expression:
            return {"output": _evaluate_field("Expression", payload.expression, ctx)}
        return {"output": _first_input(inputs)}

    elif node_type == NodeType.AGGREGATOR:
        return {"output": _aggregate(node, payload, inputs)}

    elif node_type == NodeType.DECISION:
        if not payload.condition:
            return {"output": _first_input(inputs)}
        if truthy(_evaluate_field("Condition", payload.condition, ctx)):
            value = payload.true_value
            if value is None:
                value = inputs.get("trueInput", True)
        else:
            value = payload.false_value
            if value is None:
                value = inputs.get("falseInput", False)
        return {"output": value}

    elif node_type == NodeType.CONSTRAINT:
        return _constraint(payload, inputs, ctx)

    elif node_type == NodeType.OUTPUT:
        values = list(inputs.values())
        return {payload.label: values[0] if len(values) == 1 else values}

    elif node_type == NodeType.SUBGRAPH:
        if not payload.subgraph_id:
            return {"output": dict(inputs)}
        from .subgraph import execute_subgraph_node
        return execute_subgraph_node(node, payload, inputs, ctx)

    raise EvaluationError(f"No compute function registered for node type: {node_type.value}", node.id)


class ExecutionPlan:
    """
    Precomputed schedule for one graph.

    Orders the nodes once and indexes input edges and ports so that repeated
    passes (Monte Carlo iterations, sensitivity steps, feedback rounds) do
    no graph lookups.
    """

    def __init__(self, graph: Graph):
        order = topological_sort(graph)
        if order is None:
            duplicates = sorted(i for i, n in Counter(n.id for n in graph.nodes).items() if n > 1)
            if duplicates:
                raise ExecutionError(f"Graph '{graph.name}' has duplicate node ids: {', '.join(duplicates)}")
            raise CycleError(f"Graph '{graph.name}' contains a cycle: cycle detected among dependency edges")
        self.graph = graph
        self.order: List[Node] = order
        self.nodes: Dict[str, Node] = {n.id: n for n in order}
        self.output_nodes: List[Node] = [n for n in order if n.type == NodeType.OUTPUT]
        self.feedback_edges: List[Edge] = [e for e in graph.edges if e.type == EdgeType.FEEDBACK]

        self.input_edges: Dict[str, List[Edge]] = {n.id: [] for n in order}
        self.source_keys: Dict[str, Optional[str]] = {}
        for e in graph.edges:
            if e.type == EdgeType.FEEDBACK or e.target_node_id not in self.nodes:
                continue
            source = self.nodes.get(e.source_node_id)
            if source is None:
                continue
            self.input_edges[e.target_node_id].append(e)
            port = source.output_port(e.source_port_id)
            self.source_keys[e.id] = port.name if port else None

        self._payloads: Dict[str, Optional[NodePayload]] = {}

    def payload(self, node: Node) -> Optional[NodePayload]:
        if node.id not in self._payloads:
            self._payloads[node.id] = parse_payload(node)
        return self._payloads[node.id]

    def _read(self, edge: Edge, source_outputs: Dict[str, Any]) -> Any:
        key = self.source_keys.get(edge.id)
        value = source_outputs.get(key) if key else None
        if value is None:
            value = source_outputs.get("output")
        return value

    @staticmethod
    def _deliver(node: Node, port_id: str, value: Any, inputs: Dict[str, Any], fan_in: Set[str]) -> None:
        # A multiple port holds a scalar for one writer and a list for several
        port: Optional[Port] = node.input_port(port_id)
        key = port.name if port else port_id
        if port is not None and port.multiple and key in inputs:
            if key in fan_in:
                inputs[key].append(value)
            else:
                inputs[key] = [inputs[key], value]
                fan_in.add(key)
        else:
            inputs[key] = value

    def gather_inputs(
        self,
        node: Node,
        outputs: Dict[str, Dict[str, Any]],
        ctx: ExpressionContext,
        injected: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        inputs: Dict[str, Any] = {}
        fan_in: Set[str] = set()
        for edge in self.input_edges[node.id]:
            source_outputs = outputs.get(edge.source_node_id)
            if source_outputs is None:
                continue
            value = self._read(edge, source_outputs)
            if edge.condition or edge.transform_function:
                edge_ctx = replace(ctx, node={"value": value}, inputs={"value": value})
                if edge.condition and not truthy(_evaluate_field("Edge condition", edge.condition, edge_ctx)):
                    continue
                if edge.transform_function:
                    value = _evaluate_field("Edge transform", edge.transform_function, edge_ctx)
            self._deliver(node, edge.target_port_id, value, inputs, fan_in)

        for port_id, value in (injected or {}).items():
            self._deliver(node, port_id, value, inputs, fan_in)

        for port in node.input_ports:
            if inputs.get(port.name) is not None:
                continue
            if port.default_value is not None:
                inputs[port.name] = port.default_value
            elif port.required:
                raise EvaluationError(f"Required input '{port.name}' of '{node.name}' has no value", node.id)
        return inputs

    def execute(
        self,
        params: Optional[Dict[str, Any]] = None,
        *,
        iteration: int = 0,
        time: float = 0,
        rng: Optional[SeededRandom] = None,
        injections: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> Tuple[Dict[str, Dict[str, Any]], List[ConstraintViolation]]:
        """
        Run one pass and return (outputs per node, constraint violations).

        Raises ExecutionError naming the failing node.
        """
        merged = dict(self.graph.params)
        if params:
            merged.update(params)
        outputs: Dict[str, Dict[str, Any]] = {}
        nodes_view: Dict[str, Dict[str, Any]] = {}
        base = ExpressionContext(params=merged, time=time, iteration=iteration, nodes=nodes_view, rng=rng)
        violations: List[ConstraintViolation] = []

        for node in self.order:
            try:
                injected = injections.get(node.id) if injections else None
                inputs = self.gather_inputs(node, outputs, base, injected)
                result = compute_node(node, inputs, replace(base, node=node.data, inputs=inputs), self.payload(node))
            except Exception as e:
                logger.debug("Node '%s' (%s) failed", node.name, node.id, exc_info=True)
                raise ExecutionError(f"Node '{node.name}' failed: {e}", node.id) from e

            if node.type == NodeType.CONSTRAINT and result.get("violation"):
                violation = ConstraintViolation(
                    node_id=node.id,
                    node_name=node.name,
                    value=result["output"],
                    violation=result["violation"],
                )
                if self.payload(node).fatal:
                    raise ExecutionError(
                        f"Node '{node.name}' failed: constraint violated by {violation.violation:g}", node.id)
                violations.append(violation)

            outputs[node.id] = result
            nodes_view[node.id] = result
            nodes_view.setdefault(node.name, result)
        return outputs, violations

    def run(
        self,
        params: Optional[Dict[str, Any]] = None,
        *,
        iteration: int = 0,
        time: float = 0,
        rng: Optional[SeededRandom] = None,
        injections: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> ExecutionResult:
        start = perf_counter()
        try:
            outputs, violations = self.execute(
                params, iteration=iteration, time=time, rng=rng, injections=injections)
        except ExecutionError as e:
            return ExecutionResult(
                success=False,
                error=str(e),
                failed_node_id=e.node_id,
                execution_time_ms=(perf_counter() - start) * 1000,
            )
        return ExecutionResult(
            success=True,
            outputs=outputs,
            output_nodes=[
                OutputNodeResult(node_id=n.id, node_name=n.name, outputs=outputs[n.id])
                for n in self.output_nodes
            ],
            constraint_violations=violations,
            execution_time_ms=(perf_counter() - start) * 1000,
        )


def execute_graph(
    graph: Graph,
    params: Optional[Dict[str, Any]] = None,
    *,
    iteration: int = 0,
    time: float = 0,
    rng: Optional[SeededRandom] = None,
    injections: Optional[Dict[str, Dict[str, Any]]] = None,
) -> ExecutionResult:
    """
    Execute a graph once.

    1. Order nodes topologically (FEEDBACK edges excluded); a cycle fails
       the run before any node is evaluated
    2. Evaluate each node from the values on its incoming edges
    3. Collect OUTPUT node values

    ``params`` is layered over ``graph.params`` and visible as ``$params``.
    Failures are reported in the result, never raised.
    """
    start = perf_counter()
    try:
        plan = ExecutionPlan(graph)
    except ExecutionError as e:
        logger.info("Refusing to execute '%s': %s", graph.name, e)
        return ExecutionResult(
            success=False,
            error=str(e),
            execution_time_ms=(perf_counter() - start) * 1000,
        )
    return plan.run(params, iteration=iteration, time=time, rng=rng, injections=injections)
