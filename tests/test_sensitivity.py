"""
Tests for one-at-a-time sensitivity sweeps.
"""

import numpy as np
import pytest

from scenarioforge.graph import get_node
from scenarioforge.sensitivity import run_sensitivity_analysis


@pytest.fixture
def linear_graph(builder):
    """y = 3x + 2 with x = 2."""
    x = builder.parameter("x", 2)
    t = builder.transformer("y", "3 * $inputs.input + 2")
    out = builder.output("y out")
    builder.connect(x, t)
    builder.connect(t, out)
    builder.x = x
    builder.out = out
    return builder


def test_revenue_curve_has_interior_maximum(revenue_graph):
    result = run_sensitivity_analysis(
        revenue_graph.graph,
        revenue_graph.price.id,
        "value",
        revenue_graph.out.id,
        value_range=(20, 80),
        steps=20,
    )

    assert result.success
    inputs = [p.input for p in result.data_points]
    outputs = [p.output for p in result.data_points]
    assert len(inputs) == 20
    assert inputs[0] == 20
    assert inputs[-1] == 80
    assert inputs == sorted(inputs)
    best = int(np.argmax(outputs))
    assert 0 < best < len(outputs) - 1
    assert abs(inputs[best] - 62.5) < 60 / 19
    # least squares slope of a parabola on a symmetric grid is its midpoint derivative
    assert result.sensitivity == pytest.approx(1000 - 16 * 50)


def test_linear_slope_and_elasticity(linear_graph):
    result = run_sensitivity_analysis(
        linear_graph.graph, linear_graph.x.id, "value", linear_graph.out.id,
        value_range=(0, 4), steps=5,
    )

    assert result.success
    assert [p.input for p in result.data_points] == [0, 1, 2, 3, 4]
    assert [p.output for p in result.data_points] == [2, 5, 8, 11, 14]
    assert result.parameter_id == f"{linear_graph.x.id}:value"
    assert result.base_value == 2
    assert result.sensitivity == pytest.approx(3)
    assert result.elasticity == pytest.approx(3 * 2 / 8)


def test_graph_is_not_modified(linear_graph):
    run_sensitivity_analysis(
        linear_graph.graph, linear_graph.x.id, "value", linear_graph.out.id,
        value_range=(0, 4), steps=5,
    )

    assert get_node(linear_graph.graph, linear_graph.x.id).data == {"value": 2}


def test_other_field_is_swept_too(linear_graph):
    # "value" is always set alongside the named field
    result = run_sensitivity_analysis(
        linear_graph.graph, linear_graph.x.id, "level", linear_graph.out.id,
        value_range=(1, 2), steps=2,
    )

    assert [p.output for p in result.data_points] == [5, 8]
    assert result.base_value == 1


def test_single_step(linear_graph):
    result = run_sensitivity_analysis(
        linear_graph.graph, linear_graph.x.id, "value", linear_graph.out.id,
        value_range=(3, 9), steps=1,
    )

    assert result.success
    assert [p.input for p in result.data_points] == [3]
    assert result.sensitivity == 0
    assert result.elasticity == 0


def test_missing_node(linear_graph):
    result = run_sensitivity_analysis(
        linear_graph.graph, "nope", "value", linear_graph.out.id, value_range=(0, 1))

    assert not result.success
    assert "not found" in result.error


def test_invalid_steps(linear_graph):
    result = run_sensitivity_analysis(
        linear_graph.graph, linear_graph.x.id, "value", linear_graph.out.id,
        value_range=(0, 1), steps=0,
    )

    assert not result.success


def test_every_step_failing(builder):
    x = builder.parameter("x", 1)
    agg = builder.aggregator("agg")
    t = builder.transformer("t", "'text'")
    builder.connect(x, t)
    builder.connect(t, agg)
    out = builder.output("out")
    builder.connect(agg, out)

    result = run_sensitivity_analysis(builder.graph, x.id, "value", out.id, value_range=(0, 1), steps=3)

    assert not result.success
    assert "no numeric inputs" in result.error
