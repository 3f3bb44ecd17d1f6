"""
Shared fixtures: a small graph builder and the reference graphs used across
the test modules.
"""

import pytest

from scenarioforge.graph import add_edge, add_node, create_edge, create_graph, create_node, create_port
from scenarioforge.models import DataType, EdgeType, NodeType
from scenarioforge.sampling import set_seed


class GraphBuilder:
    """Accumulates nodes and edges on an immutable Graph."""

    def __init__(self, name="test graph", params=None):
        self.graph = create_graph(name, params=params)

    def node(self, node_type, name, data=None, inputs=("input",), outputs=("output",),
             multiple=False, required=False, defaults=None):
        defaults = defaults or {}
        node = create_node(
            node_type,
            name,
            data,
            input_ports=[
                create_port(p, DataType.ANY, required=required, multiple=multiple,
                            default_value=defaults.get(p))
                for p in inputs
            ],
            output_ports=[create_port(p, DataType.ANY) for p in outputs],
        )
        self.graph = add_node(self.graph, node)
        return node

    def constant(self, name, value):
        return self.node(NodeType.CONSTANT, name, {"value": value}, inputs=())

    def parameter(self, name, value):
        return self.node(NodeType.PARAMETER, name, {"value": value}, inputs=())

    def distribution(self, name, distribution_type, **parameters):
        return self.node(
            NodeType.DISTRIBUTION, name,
            {"distributionType": distribution_type, "parameters": parameters},
            inputs=(),
        )

    def transformer(self, name, expression, inputs=("input",), **kwargs):
        return self.node(NodeType.TRANSFORMER, name, {"expression": expression}, inputs=inputs, **kwargs)

    def aggregator(self, name, method="sum"):
        return self.node(NodeType.AGGREGATOR, name, {"method": method}, inputs=("values",), multiple=True)

    def output(self, name, label="result"):
        return self.node(NodeType.OUTPUT, name, {"label": label}, inputs=("value",), outputs=())

    def connect(self, source, target, source_port="output", target_port=None,
                edge_type=EdgeType.DATA_FLOW, **options):
        src = next(p for p in source.output_ports if p.name == source_port)
        if target_port is None:
            dst = target.input_ports[0]
        else:
            dst = next(p for p in target.input_ports if p.name == target_port)
        edge = create_edge(source.id, src.id, target.id, dst.id, edge_type=edge_type, **options)
        self.graph = add_edge(self.graph, edge)
        return edge


@pytest.fixture
def builder():
    return GraphBuilder()


@pytest.fixture(autouse=True)
def reset_default_stream():
    """Every test starts from a freshly seeded default stream."""
    set_seed(12345)
    yield


@pytest.fixture
def sum_graph():
    """Constants 10, 20 and 30 summed into one OUTPUT."""
    b = GraphBuilder("sum")
    agg = b.aggregator("total", "sum")
    for i, value in enumerate((10, 20, 30)):
        b.connect(b.constant(f"c{i}", value), agg)
    out = b.output("result")
    b.connect(agg, out)
    b.out = out
    return b


@pytest.fixture
def normal_graph():
    """normal(100, 15) feeding an OUTPUT."""
    b = GraphBuilder("normal")
    dist = b.distribution("demand", "normal", mean=100, stddev=15)
    out = b.output("demand out")
    b.connect(dist, out)
    b.dist = dist
    b.out = out
    return b


@pytest.fixture
def revenue_graph():
    """Revenue = price * (1000 - 8 * price), maximal at price 62.5."""
    b = GraphBuilder("revenue")
    price = b.parameter("price", 50)
    revenue = b.transformer("revenue", "$inputs.price * (1000 - 8 * $inputs.price)", inputs=("price",))
    out = b.output("revenue out")
    b.connect(price, revenue, target_port="price")
    b.connect(revenue, out)
    b.price = price
    b.out = out
    return b


@pytest.fixture
def feedback_graph():
    """x <- 0.5 * x + 5 carried across iterations; settles at 10."""
    b = GraphBuilder("feedback")
    step = b.transformer("step", "0.5 * $inputs.prev + 5", inputs=("prev",))
    out = b.output("level")
    b.connect(step, out)
    b.loop = b.connect(step, step, target_port="prev", edge_type=EdgeType.FEEDBACK)
    b.step = step
    b.out = out
    return b
