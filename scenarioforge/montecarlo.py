"""Monte Carlo driver."""
import logging
from collections import defaultdict
from time import perf_counter
from typing import Any, Callable, Dict, List, Optional, Union

from .errors import ExecutionError, SimulationTimeoutError
from .executor import ExecutionPlan
from .feedback import FeedbackState
from .models import (
    Graph, SimulationConfig, SimulationProgress, SimulationResult,
    SimulationSample, SimulationStatus,
)
from .risk import calculate_risk_metrics, describe
from .sampling import SeededRandom, get_default_rng

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SimulationProgress], None]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_deadline(deadline: Optional[float], completed: int) -> None:
    if deadline is not None and perf_counter() > deadline:
        raise SimulationTimeoutError(completed)


def run_monte_carlo_simulation(
    graph: Graph,
    config: Union[SimulationConfig, Dict[str, Any]],
    on_progress: Optional[ProgressCallback] = None,
    rng: Optional[SeededRandom] = None,
) -> SimulationResult:
    """
    Execute ``graph`` for ``config.iterations`` iterations and aggregate the
    numeric OUTPUT values into risk metrics keyed ``"<nodeId>:<outputKey>"``.

    Random draws come from ``rng`` when given, else from a stream seeded with
    ``config.seed``, else from the module default stream (see ``set_seed``).
    The deadline (``max_execution_time``, ms) is checked between iterations;
    on expiry the result has ``success=False``, ``error="timeout"`` and the
    metrics of the iterations that completed.
    """
    if not isinstance(config, SimulationConfig):
        config = SimulationConfig.model_validate(config)
    start = perf_counter()

    try:
        plan = ExecutionPlan(graph)
    except ExecutionError as e:
        logger.info("Simulation %s rejected: %s", config.id, e)
        return SimulationResult(success=False, simulation_id=config.id, error=str(e))

    if rng is None:
        rng = SeededRandom(config.seed) if config.seed is not None else get_default_rng()
    if config.parallelism > 1:
        logger.debug("parallelism=%d requested; iterations run sequentially", config.parallelism)

    deadline = start + config.max_execution_time / 1000.0 if config.max_execution_time else None
    feedback = FeedbackState(plan)
    selected = set(config.output_nodes)
    samples: Dict[str, List[float]] = defaultdict(list)
    results: List[SimulationSample] = []
    intermediates: Optional[List[Dict[str, Dict[str, Any]]]] = [] if config.capture_intermediates else None
    interval = 1000 if config.iterations > 10000 else 100

    def finish(success: bool, completed: int, error: Optional[str] = None) -> SimulationResult:
        aggregated = {
            key: calculate_risk_metrics(values, config.confidence_level)
            for key, values in samples.items()
        }
        return SimulationResult(
            success=success,
            simulation_id=config.id,
            iterations=completed,
            results=results,
            aggregated=aggregated,
            intermediates=intermediates,
            feedback_loops=feedback.reports() if feedback else None,
            execution_time_ms=(perf_counter() - start) * 1000,
            error=error,
        )

    logger.debug("Simulation %s: %d iterations over '%s'", config.id, config.iterations, graph.name)
    completed = 0
    try:
        for i in range(config.iterations):
            _check_deadline(deadline, completed)
            injections = feedback.injections(i) if feedback else None
            outputs, _ = plan.execute(iteration=i, rng=rng, injections=injections)
            if feedback:
                feedback.record(outputs)

            for node in plan.output_nodes:
                if selected and node.id not in selected:
                    continue
                for key, value in outputs[node.id].items():
                    if not _is_number(value):
                        continue
                    samples[f"{node.id}:{key}"].append(float(value))
                    if len(results) < config.max_stored_results:
                        results.append(SimulationSample(
                            simulation_id=config.id,
                            iteration=i,
                            node_id=node.id,
                            output_key=key,
                            value=float(value),
                        ))
            if intermediates is not None:
                intermediates.append(outputs)
            completed = i + 1

            if on_progress is not None and i % interval == 0:
                on_progress(SimulationProgress(
                    simulation_id=config.id,
                    progress=i / config.iterations * 100,
                    current_iteration=i,
                    total_iterations=config.iterations,
                ))
    except SimulationTimeoutError as e:
        logger.warning("Simulation %s: %s", config.id, e)
        return finish(False, e.completed_iterations, "timeout")
    except ExecutionError as e:
        logger.info("Simulation %s failed at iteration %d: %s", config.id, completed, e)
        return finish(False, completed, f"Iteration {completed} failed: {e}")

    if on_progress is not None:
        on_progress(SimulationProgress(
            simulation_id=config.id,
            status=SimulationStatus.COMPLETED,
            progress=100.0,
            current_iteration=completed,
            total_iterations=config.iterations,
        ))

    result = finish(True, completed)
    if feedback and not feedback.all_converged:
        logger.warning("Simulation %s: feedback loops did not converge", config.id)
    logger.info("Simulation %s completed %d iterations in %.1f ms",
                config.id, completed, result.execution_time_ms)
    for key, metrics in result.aggregated.items():
        logger.debug("%s: %s", key, " | ".join(describe(metrics)))
    return result
