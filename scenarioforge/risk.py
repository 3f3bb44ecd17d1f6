"""Risk statistics over Monte Carlo sample vectors."""
from typing import Dict, Iterable, List, Sequence

import numpy as np

from .models import RiskMetrics

PERCENTILES = (5, 10, 25, 50, 75, 90, 95, 99)


def percentile(sorted_values: np.ndarray, p: float) -> float:
    """Linear interpolation between order statistics (rank = p/100 * (n-1))."""
    return float(np.percentile(sorted_values, p, method="linear"))


def _label(p: float) -> str:
    return f"p{p:g}".replace(".", "_")


def conditional_var(sorted_values: np.ndarray, p: float) -> float:
    """Mean of all samples at or below the p-th percentile."""
    cutoff = percentile(sorted_values, p)
    tail = sorted_values[sorted_values <= cutoff]
    return float(tail.mean()) if tail.size else cutoff


def calculate_risk_metrics(values: Iterable[float], confidence_level: float = 0.95) -> RiskMetrics:
    """
    Summarize a sample vector.

    Parameters:
    -----------
    values : iterable of float
        One sample per iteration
    confidence_level : float
        Level for the headline ``var``/``cvar`` fields (VaR at 0.95 is the
        5th percentile: lower outcomes are worse)

    Returns:
    --------
    RiskMetrics; every field is 0 for an empty sample
    """
    x = np.sort(np.asarray(list(values), dtype=float))
    n = x.size
    if n == 0:
        return RiskMetrics(
            count=0,
            percentiles={_label(p): 0.0 for p in PERCENTILES},
            value_at_risk={"var95": 0.0, "var99": 0.0, "var999": 0.0},
            conditional_var={"cvar95": 0.0, "cvar99": 0.0},
            confidence_level=confidence_level,
        )

    mean = float(x.mean())
    variance = float(x.var())
    std = float(np.sqrt(variance))
    if std > 0:
        z = (x - mean) / std
        skewness = float(np.mean(z ** 3))
        kurtosis = float(np.mean(z ** 4) - 3.0)
    else:
        skewness = 0.0
        kurtosis = 0.0

    tail = (1.0 - confidence_level) * 100.0
    return RiskMetrics(
        count=n,
        mean=mean,
        median=percentile(x, 50),
        standard_deviation=std,
        variance=variance,
        skewness=skewness,
        kurtosis=kurtosis,
        min=float(x[0]),
        max=float(x[-1]),
        percentiles={_label(p): percentile(x, p) for p in PERCENTILES},
        value_at_risk={
            "var95": percentile(x, 5),
            "var99": percentile(x, 1),
            "var999": percentile(x, 0.1),
        },
        conditional_var={
            "cvar95": conditional_var(x, 5),
            "cvar99": conditional_var(x, 1),
        },
        confidence_level=confidence_level,
        var=percentile(x, tail),
        cvar=conditional_var(x, tail),
    )


def aggregate_samples(
    samples: Dict[str, Sequence[float]], confidence_level: float = 0.95
) -> Dict[str, RiskMetrics]:
    return {key: calculate_risk_metrics(vals, confidence_level) for key, vals in samples.items()}


def describe(metrics: RiskMetrics) -> List[str]:
    """Human-readable summary lines, used in logs."""
    return [
        f"n={metrics.count} mean={metrics.mean:.4g} std={metrics.standard_deviation:.4g}",
        f"p5={metrics.percentiles.get('p5', 0):.4g} median={metrics.median:.4g} "
        f"p95={metrics.percentiles.get('p95', 0):.4g}",
        f"VaR({metrics.confidence_level:.0%})={metrics.var:.4g} CVaR={metrics.cvar:.4g}",
    ]
