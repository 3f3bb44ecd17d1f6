"""
Tabular views and plots of simulation and sensitivity results.
"""
import logging
from typing import Dict, Optional

import matplotlib
matplotlib.use("Agg")  # Non-interactive backend
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .models import RiskMetrics, SensitivityResult, SimulationResult

logger = logging.getLogger(__name__)

SAMPLE_COLUMNS = ["iteration", "node_id", "output_key", "value"]


def results_frame(result: SimulationResult) -> pd.DataFrame:
    """One row per stored sample: iteration, node_id, output_key, value."""
    rows = [
        (r.iteration, r.node_id, r.output_key, r.value)
        for r in result.results
    ]
    return pd.DataFrame(rows, columns=SAMPLE_COLUMNS)


def metrics_frame(aggregated: Dict[str, RiskMetrics]) -> pd.DataFrame:
    """Risk metrics indexed by ``nodeId:outputKey``, one column per statistic."""
    records = {}
    for key, m in aggregated.items():
        row = {
            "count": m.count,
            "mean": m.mean,
            "median": m.median,
            "std": m.standard_deviation,
            "skewness": m.skewness,
            "kurtosis": m.kurtosis,
            "min": m.min,
            "max": m.max,
            "var": m.var,
            "cvar": m.cvar,
        }
        row.update(m.percentiles)
        records[key] = row
    return pd.DataFrame.from_dict(records, orient="index")


def sensitivity_frame(result: SensitivityResult) -> pd.DataFrame:
    return pd.DataFrame(
        [(p.input, p.output) for p in result.data_points],
        columns=["input", "output"],
    )


def plot_distribution(
    result: SimulationResult,
    key: Optional[str] = None,
    bins: int = 50,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """
    Histogram of one output's samples with mean and VaR markers.

    ``key`` defaults to the first aggregated ``nodeId:outputKey``.
    """
    if not result.aggregated:
        raise ValueError("Simulation result has no aggregated outputs")
    key = key or next(iter(result.aggregated))
    if key not in result.aggregated:
        raise ValueError(f"Unknown output key: {key}")
    node_id, output_key = key.split(":", 1)
    values = np.asarray(result.samples_for(node_id, output_key), dtype=float)
    metrics = result.aggregated[key]

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.hist(values, bins=bins, color="royalblue", alpha=0.75)
    ax.axvline(metrics.mean, color="black", linestyle="--", label=f"Mean {metrics.mean:.4g}")
    ax.axvline(metrics.var, color="crimson", linewidth=2,
               label=f"VaR {metrics.confidence_level:.0%} {metrics.var:.4g}")
    ax.set_xlabel(output_key, fontsize=12)
    ax.set_ylabel("Frequency", fontsize=12)
    ax.set_title(f"Outcome distribution ({metrics.count} samples)", fontsize=14)
    ax.legend(loc="upper right")
    ax.grid(True, alpha=0.3)
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150)
        logger.info("Saved distribution plot to %s", save_path)
    return fig


def plot_sensitivity(result: SensitivityResult, save_path: Optional[str] = None) -> plt.Figure:
    """Output against swept input."""
    df = sensitivity_frame(result)

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.plot(df["input"], df["output"], marker="o", color="crimson", linewidth=2)
    if result.base_value is not None:
        ax.axvline(result.base_value, color="gray", linestyle="--", alpha=0.7, label="Base value")
        ax.legend(loc="best")
    ax.set_xlabel(result.field, fontsize=12)
    ax.set_ylabel("Output", fontsize=12)
    ax.set_title(f"Sensitivity of output to {result.parameter_id}", fontsize=14)
    ax.grid(True, alpha=0.3)
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150)
        logger.info("Saved sensitivity plot to %s", save_path)
    return fig
