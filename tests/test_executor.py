"""
Tests for single-pass graph execution and the built-in node types.
"""

import math

import pytest

from scenarioforge.errors import CycleError, EvaluationError, ExecutionError
from scenarioforge.executor import (
    ExecutionPlan,
    compute_node,
    execute_graph,
    register_compute_function,
    unregister_compute_function,
)
from scenarioforge.expression import ExpressionContext
from scenarioforge.graph import create_node, update_graph
from scenarioforge.models import NodeType
from scenarioforge.sampling import SeededRandom


def _result(execution, out):
    return next(o for o in execution.output_nodes if o.node_id == out.id).outputs


@pytest.fixture
def custom_compute():
    """Register compute functions for the test and remove them afterwards."""
    registered = []

    def register(node_type, fn):
        register_compute_function(node_type, fn)
        registered.append(node_type)

    yield register
    for node_type in registered:
        unregister_compute_function(node_type)


# =============================================================================
# End to end
# =============================================================================

class TestExecuteGraph:

    def test_sum_of_constants(self, sum_graph):
        result = execute_graph(sum_graph.graph)

        assert result.success
        assert result.error is None
        assert _result(result, sum_graph.out) == {"result": 60}
        assert result.execution_time_ms >= 0

    def test_outputs_keyed_by_node(self, sum_graph):
        result = execute_graph(sum_graph.graph)

        assert set(result.outputs) == {n.id for n in sum_graph.graph.nodes}

    def test_graph_is_not_mutated(self, revenue_graph):
        before = revenue_graph.graph.model_dump()
        execute_graph(revenue_graph.graph)

        assert revenue_graph.graph.model_dump() == before

    def test_cycle_fails_before_execution(self, builder):
        a = builder.transformer("a", "$inputs.input")
        c = builder.transformer("c", "$inputs.input")
        builder.connect(a, c)
        builder.connect(c, a)

        result = execute_graph(builder.graph)

        assert not result.success
        assert "cycle" in result.error.lower()
        assert result.outputs == {}

    def test_execution_plan_raises_on_cycle(self, builder):
        a = builder.transformer("a", "$inputs.input")
        builder.connect(a, a)

        with pytest.raises(CycleError):
            ExecutionPlan(builder.graph)

    def test_duplicate_node_ids_fail_before_execution(self, sum_graph):
        graph = sum_graph.graph
        duplicate = graph.nodes[0]
        graph = graph.model_copy(update={"nodes": graph.nodes + [duplicate]})

        result = execute_graph(graph)

        assert not result.success
        assert f"duplicate node ids: {duplicate.id}" in result.error
        assert result.outputs == {}
        with pytest.raises(ExecutionError) as exc:
            ExecutionPlan(graph)
        assert not isinstance(exc.value, CycleError)

    def test_params_layer_over_graph_params(self, builder):
        builder.graph = update_graph(builder.graph, params={"rate": 0.1, "base": 100})
        t = builder.transformer("t", "$params.base * (1 + $params.rate)", inputs=())
        out = builder.output("out")
        builder.connect(t, out)

        assert _result(execute_graph(builder.graph), out)["result"] == pytest.approx(110)
        assert _result(execute_graph(builder.graph, {"rate": 0.5}), out)["result"] == pytest.approx(150)

    def test_iteration_and_time_are_visible(self, builder):
        t = builder.transformer("t", "$iteration * 10 + $time", inputs=())
        out = builder.output("out")
        builder.connect(t, out)

        result = execute_graph(builder.graph, iteration=3, time=2)

        assert _result(result, out)["result"] == 32

    def test_nodes_by_id_and_name(self, builder):
        a = builder.constant("alpha", 4)
        t = builder.transformer("t", f"$nodes.alpha.output + $nodes['{a.id}'].output", inputs=())
        out = builder.output("out")
        builder.connect(a, out)
        builder.connect(t, out)

        result = execute_graph(builder.graph)

        assert result.success, result.error
        assert result.outputs[t.id]["output"] == 8

    def test_failure_names_the_node(self, builder):
        a = builder.constant("a", 1)
        t = builder.transformer("broken step", "$inputs.input +")
        builder.connect(a, t)

        result = execute_graph(builder.graph)

        assert not result.success
        assert "broken step" in result.error
        assert result.failed_node_id == t.id
        assert result.outputs == {}

    def test_division_by_zero_is_not_an_error(self, builder):
        t = builder.transformer("t", "1 / 0", inputs=())
        out = builder.output("out")
        builder.connect(t, out)

        result = execute_graph(builder.graph)

        assert result.success
        assert _result(result, out)["result"] == math.inf

    def test_non_finite_statistics_are_not_errors(self, builder):
        t = builder.transformer("t", "sum(1/0, -1/0) + round(2, $inputs.missing)", inputs=())
        out = builder.output("out")
        builder.connect(t, out)

        result = execute_graph(builder.graph)

        assert result.success
        assert math.isnan(_result(result, out)["result"])

    def test_distribution_uses_given_stream(self, normal_graph):
        first = execute_graph(normal_graph.graph, rng=SeededRandom(5))
        second = execute_graph(normal_graph.graph, rng=SeededRandom(5))

        assert _result(first, normal_graph.out) == _result(second, normal_graph.out)


# =============================================================================
# Inputs and edges
# =============================================================================

class TestInputs:

    def test_multiple_port_collects_values_in_edge_order(self, builder):
        t = builder.transformer("t", "$inputs.values", inputs=("values",), multiple=True)
        for v in (1, 2, 3):
            builder.connect(builder.constant(f"c{v}", v), t)

        result = execute_graph(builder.graph)

        assert result.outputs[t.id]["output"] == [1, 2, 3]

    def test_multiple_port_single_writer_is_scalar(self, builder):
        t = builder.transformer("t", "$inputs.values", inputs=("values",), multiple=True)
        builder.connect(builder.constant("c", 5), t)

        assert execute_graph(builder.graph).outputs[t.id]["output"] == 5

    def test_unconnected_port_default(self, builder):
        t = builder.transformer("t", "$inputs.x * 2", inputs=("x",), defaults={"x": 21})

        assert execute_graph(builder.graph).outputs[t.id]["output"] == 42

    def test_required_port_without_value(self, builder):
        t = builder.transformer("t", "$inputs.x", inputs=("x",), required=True)

        result = execute_graph(builder.graph)

        assert not result.success
        assert "Required input 'x'" in result.error
        assert result.failed_node_id == t.id

    def test_edge_transform(self, builder):
        a = builder.constant("a", 3)
        out = builder.output("out")
        builder.connect(a, out, transform_function="$inputs.value * 2")

        assert _result(execute_graph(builder.graph), out)["result"] == 6

    def test_edge_condition_blocks_delivery(self, builder):
        a = builder.constant("a", -1)
        t = builder.transformer("t", "$inputs.input", defaults={"input": 0})
        builder.connect(a, t, condition="$inputs.value > 0")

        assert execute_graph(builder.graph).outputs[t.id]["output"] == 0

    def test_bad_edge_expression_fails_target(self, builder):
        a = builder.constant("a", 1)
        t = builder.transformer("t", "$inputs.input")
        builder.connect(a, t, transform_function="$inputs.value *")

        result = execute_graph(builder.graph)

        assert not result.success
        assert result.failed_node_id == t.id

    def test_named_output_port(self, builder):
        src = builder.node(NodeType.CONSTRAINT, "limit", {"max": 10}, outputs=("output", "violation"))
        builder.connect(builder.constant("c", 12), src)
        out = builder.output("out")
        builder.connect(src, out, source_port="violation")

        assert _result(execute_graph(builder.graph), out)["result"] == 2


# =============================================================================
# Node types
# =============================================================================

class TestNodeTypes:

    @pytest.mark.parametrize("method,expected", [
        ("sum", 6),
        ("mean", 2),
        ("average", 2),
        ("min", 1),
        ("max", 3),
        ("product", 6),
        ("count", 3),
    ])
    def test_aggregator_methods(self, builder, method, expected):
        agg = builder.aggregator("agg", method)
        for v in (1, 2, 3):
            builder.connect(builder.constant(f"c{v}", v), agg)

        assert execute_graph(builder.graph).outputs[agg.id]["output"] == expected

    def test_aggregator_skips_non_numeric(self, builder):
        agg = builder.aggregator("agg", "sum")
        builder.connect(builder.constant("a", 2), agg)
        builder.connect(builder.constant("b", "n/a"), agg)

        assert execute_graph(builder.graph).outputs[agg.id]["output"] == 2

    def test_aggregator_without_numbers_fails(self, builder):
        agg = builder.aggregator("agg", "sum")
        builder.connect(builder.constant("a", "text"), agg)

        result = execute_graph(builder.graph)

        assert not result.success
        assert "no numeric inputs" in result.error

    @pytest.mark.parametrize("price,expected", [(5, "cheap"), (50, "dear")])
    def test_decision(self, builder, price, expected):
        p = builder.parameter("price", price)
        d = builder.node(NodeType.DECISION, "d", {
            "condition": "$inputs.input < 10", "trueValue": "cheap", "falseValue": "dear",
        })
        builder.connect(p, d)

        assert execute_graph(builder.graph).outputs[d.id]["output"] == expected

    def test_decision_routes_inputs(self, builder):
        d = builder.node(NodeType.DECISION, "d", {"condition": "$inputs.flag"},
                         inputs=("flag", "trueInput", "falseInput"))
        builder.connect(builder.constant("flag", False), d, target_port="flag")
        builder.connect(builder.constant("t", 1), d, target_port="trueInput")
        builder.connect(builder.constant("f", 2), d, target_port="falseInput")

        assert execute_graph(builder.graph).outputs[d.id]["output"] == 2

    def test_constraint_violation_is_reported(self, builder):
        c = builder.node(NodeType.CONSTRAINT, "budget", {"max": 100})
        builder.connect(builder.constant("spend", 130), c)

        result = execute_graph(builder.graph)

        assert result.success
        assert result.outputs[c.id] == {"output": 130, "satisfied": False, "violation": 30}
        assert len(result.constraint_violations) == 1
        assert result.constraint_violations[0].node_name == "budget"

    def test_constraint_clamp(self, builder):
        c = builder.node(NodeType.CONSTRAINT, "floor", {"min": 0, "clamp": True})
        builder.connect(builder.constant("x", -5), c)

        assert execute_graph(builder.graph).outputs[c.id]["output"] == 0

    def test_fatal_constraint_fails_run(self, builder):
        c = builder.node(NodeType.CONSTRAINT, "hard", {"max": 1, "fatal": True})
        builder.connect(builder.constant("x", 2), c)

        result = execute_graph(builder.graph)

        assert not result.success
        assert result.failed_node_id == c.id

    def test_output_with_several_inputs(self, builder):
        out = builder.node(NodeType.OUTPUT, "out", {"label": "pair"}, inputs=("a", "b"), outputs=())
        builder.connect(builder.constant("a", 1), out, target_port="a")
        builder.connect(builder.constant("b", 2), out, target_port="b")

        assert execute_graph(builder.graph).outputs[out.id] == {"pair": [1, 2]}

    def test_data_source_and_subgraph(self, builder):
        ds = builder.node(NodeType.DATA_SOURCE, "ds", {"value": 9}, inputs=())
        sub = builder.node(NodeType.SUBGRAPH, "sub", {}, inputs=("x",))
        builder.connect(ds, sub, target_port="x")

        result = execute_graph(builder.graph)

        assert result.outputs[ds.id] == {"output": 9}
        assert result.outputs[sub.id] == {"output": {"x": 9}}

    def test_extended_type_needs_registration(self, builder):
        builder.node(NodeType.DELAY, "lag", {})

        result = execute_graph(builder.graph)

        assert not result.success
        assert "No compute function registered" in result.error

    def test_registered_function(self, builder, custom_compute):
        custom_compute(NodeType.DELAY, lambda node, inputs, ctx: inputs.get("input", 0) + 1)
        lag = builder.node(NodeType.DELAY, "lag", {})
        builder.connect(builder.constant("c", 1), lag)

        assert execute_graph(builder.graph).outputs[lag.id] == {"output": 2}

    def test_registered_function_overrides_builtin(self, builder, custom_compute):
        custom_compute(NodeType.CONSTANT, lambda node, inputs, ctx: {"output": -1})
        c = builder.constant("c", 1)

        assert execute_graph(builder.graph).outputs[c.id] == {"output": -1}

    def test_compute_node_directly(self):
        node = create_node(NodeType.TRANSFORMER, "t", {"expression": "$inputs.a + 1"})

        assert compute_node(node, {"a": 1}, ExpressionContext(inputs={"a": 1})) == {"output": 2}

    def test_invalid_payload(self):
        node = create_node(NodeType.AGGREGATOR, "agg", {"method": ["not", "a", "string"]})

        with pytest.raises(EvaluationError, match="Invalid AGGREGATOR data"):
            compute_node(node, {}, ExpressionContext())
