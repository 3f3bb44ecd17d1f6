"""Error taxonomy for the scenario engine."""
from typing import Optional


class ScenarioError(ValueError):
    """Base class for every error raised by the engine."""


class GraphError(ScenarioError):
    """Structural problem with a graph (duplicate ids, bad payloads)."""


class GraphReferenceError(GraphError, LookupError):
    """A node, port or edge id does not exist in the graph."""


class ParseError(ScenarioError):
    """Malformed expression."""

    def __init__(self, message: str, position: Optional[int] = None):
        if position is not None:
            message = f"{message} (at position {position})"
        super().__init__(message)
        self.position = position


class ExecutionError(ScenarioError):
    """Failure while executing a graph."""

    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(message)
        self.node_id = node_id


class CycleError(ExecutionError):
    """DATA_FLOW edges form a cycle; nothing was executed."""


class EvaluationError(ExecutionError):
    """Node-type specific failure (missing input, empty aggregate, ...)."""


class SimulationTimeoutError(ScenarioError):
    """Monte Carlo wall-clock budget exceeded."""

    def __init__(self, completed_iterations: int):
        super().__init__(f"timeout after {completed_iterations} iterations")
        self.completed_iterations = completed_iterations
