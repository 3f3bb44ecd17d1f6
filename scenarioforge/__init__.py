"""Scenario Forge: graph-based scenario modeling with Monte Carlo risk analysis."""

__version__ = "0.1.0"

from .errors import (
    CycleError, EvaluationError, ExecutionError, GraphError,
    GraphReferenceError, ParseError, ScenarioError, SimulationTimeoutError,
)
from .models import (
    DataType, Edge, EdgeType, ExecutionResult, Graph, Node, NodeType, Port,
    PortDefinition, RiskMetrics, SensitivityResult, SimulationConfig,
    SimulationMode, SimulationResult, ValidationResult,
)
from .graph import (
    add_edge, add_node, clone_graph, create_edge, create_graph, create_node,
    create_port, export_graph_to_json, generate_id, get_edge, get_node,
    import_graph_from_json, remove_edge, remove_node, update_edge,
    update_graph, update_node,
)
from .dag import detect_cycle, find_cycles, has_cycle, topological_sort, validate_graph
from .expression import ExpressionContext, create_empty_context, evaluate, validate_expression
from .sampling import SeededRandom, sample_distribution, set_seed
from .executor import ExecutionPlan, execute_graph, register_compute_function
from .risk import calculate_risk_metrics
from .montecarlo import run_monte_carlo_simulation
from .sensitivity import run_sensitivity_analysis
from .feedback import execute_graph_with_feedback
from .subgraph import (
    SubgraphRegistry, expand_subgraph_inline, get_hierarchy_depth,
    register_subgraph, validate_subgraph_structure,
)
