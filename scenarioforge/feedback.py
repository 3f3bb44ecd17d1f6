"""
Feedback loops and convergence tracking.

A FEEDBACK edge closes a loop across iterations rather than within one:
at iteration ``i`` its target receives the source output from iteration
``i - d`` (``d`` = ``feedbackIterations``, at least 1), optionally passed
through a transform. Before ``d`` iterations have run, the edge's
``initialValue`` is delivered instead.

A loop converges once the last ``W`` delivered values agree under the
edge's metric, where ``W`` is ``convergence.windowSize`` but never less
than ``d + 1`` so the window always spans a full round trip of the loop.
"""
import logging
import math
from collections import deque
from time import perf_counter
from typing import Any, Deque, Dict, List, Optional

from .errors import EvaluationError, ExecutionError
from .executor import ExecutionPlan
from .expression import ExpressionContext, evaluate, to_number
from .models import Edge, FeedbackExecutionResult, FeedbackLoopReport, Graph, Node, OutputNodeResult
from .sampling import SeededRandom

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 1e-6
HISTORY_LIMIT = 1000

TRANSFORMS = ("direct", "delta", "moving_avg", "exponential", "pid", "custom")
METRICS = ("absolute", "relative", "oscillation")


def _sign(x: float) -> int:
    return (x > 0) - (x < 0)


def window_converged(values: List[float], metric: str, tolerance: float) -> bool:
    """
    ``absolute``: the window's spread is within tolerance.
    ``relative``: the spread divided by the window's mean magnitude is.
    ``oscillation``: the values change direction at most once and end
    within tolerance of where the window started.
    """
    if not all(math.isfinite(v) for v in values):
        return False
    spread = max(values) - min(values)
    if metric == "relative":
        mean = abs(sum(values) / len(values))
        if mean == 0:
            return spread == 0
        return spread / mean <= tolerance
    if metric == "oscillation":
        signs = [s for s in (_sign(b - a) for a, b in zip(values, values[1:])) if s]
        changes = sum(1 for a, b in zip(signs, signs[1:]) if a != b)
        return changes <= 1 and abs(values[-1] - values[0]) <= tolerance
    return spread <= tolerance


class FeedbackChannel:
    """Delay buffer, transform state and convergence tracking for one edge."""

    def __init__(self, edge: Edge, source: Node, target: Node, tolerance: Optional[float] = None):
        self.edge = edge
        self.delay = max(1, int(edge.feedback_iterations or 1))
        convergence: Dict[str, Any] = edge.data.get("convergence") or {}
        if edge.convergence_tolerance is not None:
            self.tolerance = edge.convergence_tolerance
        elif convergence.get("tolerance") is not None:
            self.tolerance = float(convergence["tolerance"])
        elif tolerance is not None:
            self.tolerance = tolerance
        else:
            self.tolerance = DEFAULT_TOLERANCE

        self.transform = edge.data.get("transform", "direct")
        if self.transform not in TRANSFORMS:
            logger.warning("Unknown feedback transform %r on edge %s, passing values through",
                           self.transform, edge.id)
        self.config: Dict[str, Any] = edge.data.get("transformConfig") or {}
        self.expression = edge.data.get("customExpression") or self.config.get("expression")
        if self.transform == "custom" and not self.expression:
            logger.warning("Custom feedback transform on edge %s has no expression, passing values through",
                           edge.id)

        self.metric = convergence.get("metric", "absolute")
        if self.metric not in METRICS:
            logger.warning("Unknown convergence metric %r on edge %s, using absolute", self.metric, edge.id)
            self.metric = "absolute"
        self.window = min(HISTORY_LIMIT, max(int(convergence.get("windowSize") or 0), self.delay + 1))

        port = source.output_port(edge.source_port_id)
        self.source_key = port.name if port else None
        target_port = target.input_port(edge.target_port_id)
        if edge.data.get("initialValue") is not None:
            self.initial = edge.data["initialValue"]
        elif target_port is not None and target_port.default_value is not None:
            self.initial = target_port.default_value
        else:
            self.initial = 0

        self._delayed: Deque[Any] = deque(maxlen=self.delay)
        self._window: Deque[float] = deque(maxlen=int(self.config.get("windowSize", 5)))
        self._prev_raw: Optional[float] = None
        self._smoothed: Optional[float] = None
        self._integral = 0.0
        self._prev_error = 0.0

        self.history: Deque[float] = deque(maxlen=HISTORY_LIMIT)
        self.iterations = 0
        self.last_value: Any = None
        self.converged = False
        self.convergence_iteration: Optional[int] = None

    def _apply_transform(self, raw: Any, iteration: int) -> Any:
        if self.transform == "custom" and self.expression:
            ctx = ExpressionContext(
                node={"value": raw},
                inputs={"value": raw},
                iteration=iteration,
                extra={"feedbackValue": raw},
            )
            try:
                return evaluate(self.expression, ctx)
            except Exception as e:
                raise EvaluationError(
                    f"Feedback transform on edge '{self.edge.id}' failed: {e}", self.edge.target_node_id) from e
        if self.transform == "delta":
            x = to_number(raw)
            value = 0.0 if self._prev_raw is None else x - self._prev_raw
            self._prev_raw = x
            return value
        if self.transform == "moving_avg":
            self._window.append(to_number(raw))
            return sum(self._window) / len(self._window)
        if self.transform == "exponential":
            x = to_number(raw)
            alpha = float(self.config.get("alpha", 0.3))
            self._smoothed = x if self._smoothed is None else alpha * x + (1 - alpha) * self._smoothed
            return self._smoothed
        if self.transform == "pid":
            error = float(self.config.get("setpoint", 0.0)) - to_number(raw)
            self._integral += error
            derivative = error - self._prev_error
            self._prev_error = error
            return (float(self.config.get("kp", 1.0)) * error
                    + float(self.config.get("ki", 0.0)) * self._integral
                    + float(self.config.get("kd", 0.0)) * derivative)
        return raw

    def deliver(self, iteration: int) -> Any:
        """Value carried to the target at ``iteration``; updates convergence."""
        warm = len(self._delayed) == self.delay
        raw = self._delayed[0] if warm else self.initial
        value = self._apply_transform(raw, iteration)

        numeric = isinstance(value, (int, float)) and not isinstance(value, bool)
        if numeric:
            self.history.append(float(value))
        # Only a delivery of a real source value can complete convergence
        if (numeric and warm and not self.converged and len(self.history) >= self.window
                and window_converged(list(self.history)[-self.window:],
                                     self.metric, self.tolerance)):
            self.converged = True
            self.convergence_iteration = iteration
            logger.debug("Feedback edge %s converged at iteration %d", self.edge.id, iteration)

        self.iterations += 1
        self.last_value = value
        return value

    def record(self, outputs: Dict[str, Dict[str, Any]]) -> None:
        """Capture this iteration's source output for later delivery."""
        source_outputs = outputs.get(self.edge.source_node_id) or {}
        value = source_outputs.get(self.source_key) if self.source_key else None
        if value is None:
            value = source_outputs.get("output")
        self._delayed.append(value)

    def report(self) -> FeedbackLoopReport:
        final = self.last_value
        if isinstance(final, float) and not math.isfinite(final):
            final = None
        return FeedbackLoopReport(
            edge_id=self.edge.id,
            source_node_id=self.edge.source_node_id,
            target_node_id=self.edge.target_node_id,
            delay=self.delay,
            converged=self.converged,
            convergence_iteration=self.convergence_iteration,
            iterations=self.iterations,
            final_value=final,
            convergence_history=list(self.history),
        )


class FeedbackState:
    """All feedback channels of one execution plan."""

    def __init__(self, plan: ExecutionPlan, tolerance: Optional[float] = None):
        self.channels: List[FeedbackChannel] = []
        for edge in plan.feedback_edges:
            source = plan.nodes.get(edge.source_node_id)
            target = plan.nodes.get(edge.target_node_id)
            if source is None or target is None:
                logger.warning("Skipping feedback edge %s with a missing endpoint", edge.id)
                continue
            self.channels.append(FeedbackChannel(edge, source, target, tolerance))

    def __bool__(self) -> bool:
        return bool(self.channels)

    def injections(self, iteration: int) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for ch in self.channels:
            out.setdefault(ch.edge.target_node_id, {})[ch.edge.target_port_id] = ch.deliver(iteration)
        return out

    def record(self, outputs: Dict[str, Dict[str, Any]]) -> None:
        for ch in self.channels:
            ch.record(outputs)

    @property
    def all_converged(self) -> bool:
        return all(ch.converged for ch in self.channels)

    def reports(self) -> List[FeedbackLoopReport]:
        return [ch.report() for ch in self.channels]


def execute_graph_with_feedback(
    graph: Graph,
    params: Optional[Dict[str, Any]] = None,
    max_feedback_iterations: int = 100,
    convergence_tolerance: Optional[float] = None,
    rng: Optional[SeededRandom] = None,
) -> FeedbackExecutionResult:
    """
    Run repeated passes, carrying FEEDBACK values forward, until every loop
    converges or ``max_feedback_iterations`` passes have run.

    The result holds the outputs of the last pass and one report per loop.
    """
    start = perf_counter()
    try:
        plan = ExecutionPlan(graph)
    except ExecutionError as e:
        return FeedbackExecutionResult(success=False, error=str(e),
                                       execution_time_ms=(perf_counter() - start) * 1000)

    state = FeedbackState(plan, convergence_tolerance)
    outputs: Dict[str, Dict[str, Any]] = {}
    violations = []
    passes = max(1, max_feedback_iterations) if state else 1

    iterations = 0
    for i in range(passes):
        try:
            outputs, violations = plan.execute(params, iteration=i, rng=rng,
                                               injections=state.injections(i))
        except ExecutionError as e:
            return FeedbackExecutionResult(
                success=False,
                error=f"Feedback iteration {i} failed: {e}",
                failed_node_id=e.node_id,
                iterations=i,
                feedback_loops=state.reports(),
                execution_time_ms=(perf_counter() - start) * 1000,
            )
        iterations = i + 1
        state.record(outputs)
        if state and state.all_converged:
            break

    converged = state.all_converged
    if not converged:
        logger.warning("Feedback loops in '%s' did not converge within %d iterations",
                       graph.name, iterations)
    return FeedbackExecutionResult(
        success=True,
        outputs=outputs,
        output_nodes=[
            OutputNodeResult(node_id=n.id, node_name=n.name, outputs=outputs[n.id])
            for n in plan.output_nodes
        ],
        constraint_violations=violations,
        iterations=iterations,
        converged=converged,
        feedback_loops=state.reports(),
        execution_time_ms=(perf_counter() - start) * 1000,
    )
