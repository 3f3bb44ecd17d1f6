"""
Tests for result tables and plots.
"""

import matplotlib.pyplot as plt
import pytest

from scenarioforge.analysis import (
    metrics_frame,
    plot_distribution,
    plot_sensitivity,
    results_frame,
    sensitivity_frame,
)
from scenarioforge.montecarlo import run_monte_carlo_simulation
from scenarioforge.sensitivity import run_sensitivity_analysis


@pytest.fixture
def simulation(normal_graph):
    return run_monte_carlo_simulation(normal_graph.graph, {"iterations": 500, "seed": 1})


@pytest.fixture
def sweep(revenue_graph):
    return run_sensitivity_analysis(
        revenue_graph.graph, revenue_graph.price.id, "value", revenue_graph.out.id,
        value_range=(20, 80), steps=7,
    )


def test_results_frame(simulation, normal_graph):
    df = results_frame(simulation)

    assert len(df) == 500
    assert set(df["node_id"]) == {normal_graph.out.id}
    assert df["value"].mean() == pytest.approx(simulation.aggregated[f"{normal_graph.out.id}:result"].mean)


def test_metrics_frame(simulation, normal_graph):
    df = metrics_frame(simulation.aggregated)
    row = df.loc[f"{normal_graph.out.id}:result"]

    assert row["count"] == 500
    assert row["p5"] <= row["median"] <= row["p95"]
    assert {"mean", "std", "var", "cvar", "p99"} <= set(df.columns)


def test_sensitivity_frame(sweep):
    df = sensitivity_frame(sweep)

    assert list(df.columns) == ["input", "output"]
    assert len(df) == 7


def test_plot_distribution(simulation, tmp_path):
    path = tmp_path / "dist.png"

    fig = plot_distribution(simulation, save_path=str(path))

    assert path.exists()
    assert fig.axes[0].get_ylabel() == "Frequency"
    plt.close(fig)


def test_plot_distribution_unknown_key(simulation):
    with pytest.raises(ValueError, match="Unknown output key"):
        plot_distribution(simulation, key="missing:result")


def test_plot_distribution_without_outputs(sum_graph):
    result = run_monte_carlo_simulation(sum_graph.graph, {"iterations": 0})

    with pytest.raises(ValueError):
        plot_distribution(result)


def test_plot_sensitivity(sweep, tmp_path):
    path = tmp_path / "sens.png"

    fig = plot_sensitivity(sweep, save_path=str(path))

    assert path.exists()
    assert len(fig.axes[0].lines) == 2  # curve and base value marker
    plt.close(fig)
