"""One-at-a-time sensitivity sweeps."""
import logging
from typing import Any, Dict, Optional, Sequence

import numpy as np

from .errors import ExecutionError
from .executor import ExecutionPlan
from .graph import get_node, update_node
from .models import Graph, SensitivityPoint, SensitivityResult
from .sampling import SeededRandom

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def run_sensitivity_analysis(
    graph: Graph,
    parameter_node_id: str,
    parameter_field: str,
    output_node_id: str,
    output_field: str = "result",
    value_range: Sequence[float] = (0.0, 1.0),
    steps: int = 10,
    params: Optional[Dict[str, Any]] = None,
    rng: Optional[SeededRandom] = None,
) -> SensitivityResult:
    """
    Sweep ``parameter_field`` of one node across ``value_range``.

    Parameters:
    -----------
    graph : Graph
        Left untouched; each step runs on an updated copy
    parameter_node_id, parameter_field : str
        Node and data field to vary (``value`` is set too, so CONSTANT and
        PARAMETER nodes pick it up)
    output_node_id, output_field : str
        OUTPUT node and key to read
    value_range : (lo, hi)
        Inclusive bounds
    steps : int
        Number of evenly spaced inputs

    Returns:
    --------
    SensitivityResult with data points in ascending input order, the least
    squares slope (``sensitivity``) and ``elasticity`` at the base value
    """
    lo, hi = float(value_range[0]), float(value_range[1])
    parameter_id = f"{parameter_node_id}:{parameter_field}"
    fail = dict(success=False, parameter_id=parameter_id, node_id=parameter_node_id, field=parameter_field)

    node = get_node(graph, parameter_node_id)
    if node is None:
        return SensitivityResult(**fail, error=f"Parameter node {parameter_node_id} not found")
    if steps < 1:
        return SensitivityResult(**fail, error=f"steps must be at least 1, got {steps}")

    base = node.data.get(parameter_field)
    base_value = float(base) if _is_number(base) else lo

    points = []
    last_error = None
    for x in np.linspace(lo, hi, steps):
        x = float(x)
        data = {**node.data, parameter_field: x, "value": x}
        try:
            plan = ExecutionPlan(update_node(graph, parameter_node_id, {"data": data}))
        except ExecutionError as e:
            return SensitivityResult(**fail, base_value=base_value, error=str(e))
        result = plan.run(params, rng=rng)
        if not result.success:
            last_error = result.error
            logger.debug("Sensitivity step %s=%g failed: %s", parameter_id, x, result.error)
            continue
        out = next((o for o in result.output_nodes if o.node_id == output_node_id), None)
        value = out.outputs.get(output_field) if out else None
        if _is_number(value):
            points.append(SensitivityPoint(input=x, output=float(value)))

    if not points and last_error:
        return SensitivityResult(**fail, base_value=base_value, error=last_error)

    sensitivity = 0.0
    elasticity = 0.0
    if len(points) >= 2:
        xs = np.array([p.input for p in points])
        ys = np.array([p.output for p in points])
        if np.ptp(xs) > 0:
            sensitivity = float(np.polyfit(xs, ys, 1)[0])
        half_step = abs(hi - lo) / (steps - 1) / 2 if steps > 1 else 0.0
        base_point = next((p for p in points if abs(p.input - base_value) <= half_step), None)
        base_output = base_point.output if base_point else float(ys.mean())
        if base_value != 0 and base_output != 0:
            elasticity = sensitivity * base_value / base_output

    logger.debug("Sensitivity %s -> %s:%s slope=%g", parameter_id, output_node_id, output_field, sensitivity)
    return SensitivityResult(
        success=True,
        parameter_id=parameter_id,
        node_id=parameter_node_id,
        field=parameter_field,
        base_value=base_value,
        sensitivity=sensitivity,
        elasticity=elasticity,
        data_points=points,
    )
