"""Data model: graphs, nodes, ports, edges, configs and result envelopes.

Python attributes are snake_case; JSON uses the camelCase names
(``sourceNodeId``, ``inputPorts``, ...). Both spellings are accepted on input.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# --- Enumerations ---

class DataType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    NULL = "null"
    ANY = "any"
    DISTRIBUTION = "distribution"
    EXPRESSION = "expression"
    TIME_SERIES = "timeSeries"


class NodeType(str, Enum):
    # Base set
    DATA_SOURCE = "DATA_SOURCE"
    CONSTANT = "CONSTANT"
    PARAMETER = "PARAMETER"
    DISTRIBUTION = "DISTRIBUTION"
    TRANSFORMER = "TRANSFORMER"
    AGGREGATOR = "AGGREGATOR"
    DECISION = "DECISION"
    CONSTRAINT = "CONSTRAINT"
    OUTPUT = "OUTPUT"
    SUBGRAPH = "SUBGRAPH"
    # Temporal / dynamic
    INTEGRATOR = "INTEGRATOR"
    DIFFERENTIATOR = "DIFFERENTIATOR"
    DELAY = "DELAY"
    STATE_MACHINE = "STATE_MACHINE"
    EVENT_QUEUE = "EVENT_QUEUE"
    SCHEDULER = "SCHEDULER"
    # Stochastic
    MARKOV_CHAIN = "MARKOV_CHAIN"
    RANDOM_PROCESS = "RANDOM_PROCESS"
    SAMPLER = "SAMPLER"
    # Signal processing
    FILTER = "FILTER"
    CONVOLUTION = "CONVOLUTION"
    # Memory / state
    BUFFER = "BUFFER"
    ACCUMULATOR = "ACCUMULATOR"
    LOOKUP_TABLE = "LOOKUP_TABLE"
    HISTORY = "HISTORY"
    # Control
    PID_CONTROLLER = "PID_CONTROLLER"
    KALMAN_FILTER = "KALMAN_FILTER"
    # Optimization / iterative
    OBJECTIVE = "OBJECTIVE"
    OPTIMIZER = "OPTIMIZER"
    SOLVER = "SOLVER"
    ITERATOR = "ITERATOR"
    CONVERGENCE_CHECK = "CONVERGENCE_CHECK"
    FIXED_POINT = "FIXED_POINT"
    # Game theory / agents
    AGENT = "AGENT"
    STRATEGY = "STRATEGY"
    PAYOFF_MATRIX = "PAYOFF_MATRIX"


class EdgeType(str, Enum):
    DATA_FLOW = "DATA_FLOW"
    DEPENDENCY = "DEPENDENCY"
    CONDITIONAL = "CONDITIONAL"
    FEEDBACK = "FEEDBACK"
    TEMPORAL = "TEMPORAL"


class SimulationMode(str, Enum):
    DETERMINISTIC = "deterministic"
    MONTE_CARLO = "monte_carlo"
    SENSITIVITY = "sensitivity"


class SimulationStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# --- Graph structure ---

class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0


class PortDefinition(CamelModel):
    name: str
    data_type: DataType = DataType.ANY
    required: bool = False
    multiple: bool = False
    default_value: Any = None


class Port(PortDefinition):
    id: str = Field(default_factory=new_id)


class Node(CamelModel):
    id: str = Field(default_factory=new_id)
    type: NodeType
    name: str
    description: Optional[str] = None
    position: Position = Field(default_factory=Position)
    data: Dict[str, Any] = Field(default_factory=dict)
    input_ports: List[Port] = Field(default_factory=list)
    output_ports: List[Port] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    locked: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def input_port(self, port_id: str) -> Optional[Port]:
        return next((p for p in self.input_ports if p.id == port_id), None)

    def output_port(self, port_id: str) -> Optional[Port]:
        return next((p for p in self.output_ports if p.id == port_id), None)


class Edge(CamelModel):
    id: str = Field(default_factory=new_id)
    source_node_id: str
    source_port_id: str
    target_node_id: str
    target_port_id: str
    type: EdgeType = EdgeType.DATA_FLOW
    data: Dict[str, Any] = Field(default_factory=dict)
    weight: Optional[float] = None
    delay: Optional[float] = None
    condition: Optional[str] = None
    transform_function: Optional[str] = None
    feedback_iterations: Optional[int] = None
    convergence_tolerance: Optional[float] = None
    label: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_feedback(self) -> bool:
        return self.type == EdgeType.FEEDBACK


class Graph(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    params: Dict[str, Any] = Field(default_factory=dict)
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class GraphExport(CamelModel):
    version: str = "1.0.0"
    exported_at: datetime = Field(default_factory=utcnow)
    graph: Graph


# --- Per-type node payloads ---

class NodePayload(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class ConstantData(NodePayload):
    value: Any = None


class DistributionData(NodePayload):
    distribution_type: str = "normal"
    parameters: Dict[str, float] = Field(default_factory=dict)
    values: Optional[List[Any]] = None
    probabilities: Optional[List[float]] = None

    @model_validator(mode="before")
    @classmethod
    def _collect_flat_parameters(cls, data: Any) -> Any:
        # Sample graphs keep parameters flat: {distributionType, mean, stddev}
        if not isinstance(data, dict):
            return data
        data = dict(data)
        params = dict(data.get("parameters") or {})
        for key, value in data.items():
            if key in ("parameters", "values", "probabilities"):
                continue
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                params.setdefault(key, float(value))
        data["parameters"] = params
        if "type" in data and "distributionType" not in data and "distribution_type" not in data:
            data["distributionType"] = data["type"]
        return data


class TransformerData(NodePayload):
    expression: Optional[str] = None


class AggregatorData(NodePayload):
    method: str = "sum"


class DecisionData(NodePayload):
    condition: Optional[str] = None
    true_value: Any = None
    false_value: Any = None


class ConstraintData(NodePayload):
    expression: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    clamp: bool = False
    fatal: bool = False


class OutputData(NodePayload):
    label: str = "result"


class PortMapping(CamelModel):
    """Wires a port of a SUBGRAPH node to a node inside the referenced graph."""
    external_port: str
    internal_node_id: str
    # Input port name/id for input mappings, output key/port id for outputs
    internal_port: str = "output"
    transform: Optional[str] = None


class SubgraphData(NodePayload):
    subgraph_id: Optional[str] = None
    port_mappings: List[PortMapping] = Field(default_factory=list)
    instance_params: Dict[str, Any] = Field(default_factory=dict)
    inherited_params: List[str] = Field(default_factory=list)
    share_iteration_state: bool = True


# --- Validation ---

class ValidationIssue(CamelModel):
    code: str
    message: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None


class ValidationResult(CamelModel):
    valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)


# --- Execution results ---

class ConstraintViolation(CamelModel):
    node_id: str
    node_name: str
    value: float
    violation: float


class OutputNodeResult(CamelModel):
    node_id: str
    node_name: str
    outputs: Dict[str, Any] = Field(default_factory=dict)


class ExecutionResult(CamelModel):
    success: bool
    outputs: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    output_nodes: List[OutputNodeResult] = Field(default_factory=list)
    constraint_violations: List[ConstraintViolation] = Field(default_factory=list)
    error: Optional[str] = None
    failed_node_id: Optional[str] = None
    execution_time_ms: float = 0.0


class FeedbackLoopReport(CamelModel):
    edge_id: str
    source_node_id: str
    target_node_id: str
    delay: int
    converged: bool = False
    convergence_iteration: Optional[int] = None
    iterations: int = 0
    final_value: Any = None
    convergence_history: List[float] = Field(default_factory=list)


class FeedbackExecutionResult(ExecutionResult):
    iterations: int = 0
    converged: bool = False
    feedback_loops: Optional[List[FeedbackLoopReport]] = None


# --- Simulation ---

class SimulationConfig(CamelModel):
    id: str = Field(default_factory=new_id)
    graph_id: Optional[str] = None
    name: Optional[str] = None
    mode: SimulationMode = SimulationMode.MONTE_CARLO
    iterations: int = Field(1000, ge=0)
    seed: Optional[int] = None
    max_execution_time: Optional[float] = Field(None, description="Wall-clock budget in milliseconds")
    parallelism: int = 1
    output_nodes: List[str] = Field(default_factory=list)
    capture_intermediates: bool = False
    confidence_level: float = Field(0.95, gt=0.0, lt=1.0)
    max_stored_results: int = 100_000


class SimulationSample(CamelModel):
    simulation_id: Optional[str] = None
    iteration: int
    node_id: str
    output_key: str
    value: float


class SimulationProgress(CamelModel):
    simulation_id: Optional[str] = None
    status: SimulationStatus = SimulationStatus.RUNNING
    progress: float
    current_iteration: int
    total_iterations: int


class RiskMetrics(CamelModel):
    count: int = 0
    mean: float = 0.0
    median: float = 0.0
    standard_deviation: float = 0.0
    variance: float = 0.0
    skewness: float = 0.0
    kurtosis: float = 0.0
    min: float = 0.0
    max: float = 0.0
    percentiles: Dict[str, float] = Field(default_factory=dict)
    value_at_risk: Dict[str, float] = Field(default_factory=dict)
    conditional_var: Dict[str, float] = Field(default_factory=dict, alias="conditionalVaR")
    confidence_level: float = 0.95
    var: float = 0.0
    cvar: float = 0.0


class SimulationResult(CamelModel):
    success: bool
    simulation_id: Optional[str] = None
    iterations: int = 0
    results: List[SimulationSample] = Field(default_factory=list)
    aggregated: Dict[str, RiskMetrics] = Field(default_factory=dict)
    intermediates: Optional[List[Dict[str, Dict[str, Any]]]] = None
    feedback_loops: Optional[List[FeedbackLoopReport]] = None
    execution_time_ms: float = 0.0
    error: Optional[str] = None

    def samples_for(self, node_id: str, output_key: str = "result") -> List[float]:
        return [
            r.value for r in self.results
            if r.node_id == node_id and r.output_key == output_key
        ]

    def to_frame(self):
        """Sample table as a pandas DataFrame (one row per sample)."""
        from .analysis import results_frame
        return results_frame(self)


# --- Sensitivity ---

class SensitivityPoint(CamelModel):
    input: float
    output: float


class SensitivityResult(CamelModel):
    success: bool
    parameter_id: str
    node_id: str
    field: str
    base_value: Optional[float] = None
    sensitivity: float = 0.0
    elasticity: float = 0.0
    data_points: List[SensitivityPoint] = Field(default_factory=list)
    error: Optional[str] = None
