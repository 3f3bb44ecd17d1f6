"""Seeded random streams and distribution sampling."""
import logging
import math
from typing import Any, Dict, List, Optional, Union

import numpy as np

from .errors import EvaluationError
from .models import DistributionData

logger = logging.getLogger(__name__)


class SeededRandom:
    """
    Owned pseudo-random stream.

    Wraps a numpy Generator so that a simulation run can carry its own
    stream instead of sharing process-wide state. Child streams for
    parallel work come from ``spawn``.
    """

    def __init__(self, seed: Union[int, np.random.SeedSequence, None] = None):
        if isinstance(seed, np.random.SeedSequence):
            self._seq = seed
            self.seed = None
        else:
            self._seq = np.random.SeedSequence(seed)
            self.seed = seed
        self.generator = np.random.default_rng(self._seq)

    def random(self) -> float:
        return float(self.generator.random())

    def spawn(self, n: int) -> List["SeededRandom"]:
        return [SeededRandom(child) for child in self._seq.spawn(n)]

    def __repr__(self) -> str:
        return f"SeededRandom(seed={self.seed!r})"


_default_stream = SeededRandom()


def set_seed(seed: Optional[int]) -> SeededRandom:
    """Replace the module default stream with a fresh one seeded by ``seed``."""
    global _default_stream
    _default_stream = SeededRandom(seed)
    logger.debug("Default random stream reseeded with %r", seed)
    return _default_stream


def get_default_rng() -> SeededRandom:
    return _default_stream


def _param(params: Dict[str, float], *names: str, default: float) -> float:
    for name in names:
        if name in params and params[name] is not None:
            return float(params[name])
    return default


def _truncated_normal(gen: np.random.Generator, mean: float, std: float,
                      lo: float, hi: float) -> float:
    for _ in range(1000):
        x = gen.normal(mean, std)
        if lo <= x <= hi:
            return float(x)
    # Mass of the window is negligible, fall back to the nearest bound
    return float(min(max(mean, lo), hi))


def _discrete(gen: np.random.Generator, values: List[Any],
              probabilities: Optional[List[float]]) -> Any:
    if not values:
        raise EvaluationError("Discrete distribution needs at least one value")
    if probabilities:
        if len(probabilities) != len(values):
            raise EvaluationError("Discrete distribution: values and probabilities differ in length")
        weights = np.asarray(probabilities, dtype=float)
        weights = weights / weights.sum()
    else:
        weights = None
    value = values[int(gen.choice(len(values), p=weights))]
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return value


def sample_distribution(config: Union[DistributionData, Dict[str, Any]],
                        rng: Optional[SeededRandom] = None) -> Any:
    """
    Draw one sample from the configured distribution.

    Parameters:
    -----------
    config : DistributionData or dict
        ``distributionType`` plus parameters, nested under ``parameters``
        or flat (``{"distributionType": "normal", "mean": 100, "stddev": 15}``).
    rng : SeededRandom, optional
        Stream to draw from; the module default stream when omitted.

    Returns:
    --------
    float (or the chosen element for ``discrete``)
    """
    if not isinstance(config, DistributionData):
        config = DistributionData.model_validate(config)
    gen = (rng or _default_stream).generator
    p = config.parameters
    kind = config.distribution_type.lower()

    try:
        if kind in ("normal", "gaussian"):
            return float(gen.normal(_param(p, "mean", "mu", default=0.0),
                                    _param(p, "std", "stddev", "stdDev", "sigma", default=1.0)))
        if kind == "uniform":
            return float(gen.uniform(_param(p, "min", "low", default=0.0),
                                     _param(p, "max", "high", default=1.0)))
        if kind in ("uniform_int", "uniformint", "integer"):
            lo = int(_param(p, "min", "low", default=0.0))
            hi = int(_param(p, "max", "high", default=10.0))
            return float(gen.integers(lo, hi + 1))
        if kind == "bernoulli":
            prob = _param(p, "p", "probability", default=0.5)
            return 1.0 if gen.random() < prob else 0.0
        if kind == "triangular":
            lo = _param(p, "min", "low", default=0.0)
            hi = _param(p, "max", "high", default=1.0)
            mode = _param(p, "mode", "peak", default=(lo + hi) / 2.0)
            if hi <= lo:
                return lo
            return float(gen.triangular(lo, mode, hi))
        if kind == "lognormal":
            return float(gen.lognormal(_param(p, "mu", "mean", default=0.0),
                                       _param(p, "sigma", "std", "stddev", default=1.0)))
        if kind == "exponential":
            rate = _param(p, "rate", "lambda", default=1.0)
            return float(gen.exponential(1.0 / rate))
        if kind == "beta":
            return float(gen.beta(_param(p, "alpha", "a", default=2.0),
                                  _param(p, "beta", "b", default=2.0)))
        if kind == "gamma":
            shape = _param(p, "shape", "alpha", "k", default=2.0)
            if "rate" in p:
                scale = 1.0 / _param(p, "rate", default=1.0)
            else:
                scale = _param(p, "scale", "theta", default=1.0)
            return float(gen.gamma(shape, scale))
        if kind == "poisson":
            return float(gen.poisson(_param(p, "lambda", "rate", "mean", default=1.0)))
        if kind == "binomial":
            return float(gen.binomial(int(_param(p, "n", "trials", default=10.0)),
                                      _param(p, "p", "probability", default=0.5)))
        if kind in ("truncated_normal", "truncatednormal"):
            return _truncated_normal(
                gen,
                _param(p, "mean", "mu", default=0.0),
                _param(p, "std", "stddev", "stdDev", "sigma", default=1.0),
                _param(p, "min", "low", default=-math.inf),
                _param(p, "max", "high", default=math.inf),
            )
        if kind == "discrete":
            return _discrete(gen, config.values or [], config.probabilities)
        if kind == "compound":
            # Poisson event count, lognormal severity per event
            count = int(gen.poisson(_param(p, "frequency", "lambda", default=1.0)))
            if count == 0:
                return 0.0
            severities = gen.lognormal(_param(p, "severityMu", "mu", default=0.0),
                                       _param(p, "severitySigma", "sigma", default=1.0),
                                       size=count)
            return float(severities.sum())
    except (ValueError, ZeroDivisionError) as e:
        raise EvaluationError(f"Invalid parameters for {kind} distribution: {e}") from e

    logger.warning("Unknown distribution type %r, sampling uniform[0, 1)", config.distribution_type)
    return float(gen.random())
