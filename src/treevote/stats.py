"""Confidence and error estimators used when combining votes."""
from __future__ import annotations

import math
from typing import Any, Mapping

from scipy import stats

from .constants import PRECISION, RZ, WS_Z


def ws_confidence(prediction: Any, distribution, ws_z: float = WS_Z,
                  ws_n: float | None = None) -> float:
    """
    Wilson score lower bound for the proportion of ``prediction``.

    Parameters
    ----------
    prediction : Any
        Category whose confidence is computed.
    distribution : dict or list
        ``{category: weight}`` or ``[[category, weight], ...]``.
    ws_z : float, default=1.96
        z value of the interval.
    ws_n : float, optional
        Number of instances behind the distribution.  Defaults to the sum
        of its weights.

    Returns
    -------
    float
        The confidence, rounded to 5 decimals.
    """
    if not isinstance(distribution, Mapping):
        distribution = dict((category, weight) for category, weight in distribution)
    ws_p = distribution.get(prediction, 0)
    if ws_p < 0:
        raise ValueError("The distribution weight must be a positive value")
    ws_norm = float(sum(distribution.values()))
    if ws_norm != 1.0:
        ws_p = ws_p / ws_norm
    ws_n = ws_norm if ws_n is None else float(ws_n)
    if ws_n < 1:
        raise ValueError("The total of instances in the distribution must be"
                         " a positive integer")
    ws_z = float(ws_z)
    ws_z2 = ws_z * ws_z
    ws_factor = ws_z2 / ws_n
    ws_sqrt = math.sqrt((ws_p * (1 - ws_p) + ws_factor / 4) / ws_n)
    return round((ws_p + ws_factor / 2 - ws_z * ws_sqrt) / (1 + ws_factor), PRECISION)


def distribution_mean(distribution) -> float:
    total = 0.0
    instances = 0
    for point, count in distribution:
        total += point * count
        instances += count
    return total / instances if instances > 0 else float("nan")


def unbiased_sample_variance(distribution, mean: float | None = None) -> float:
    """Variance of a ``[[value, count], ...]`` distribution (``nan`` if n <= 1)."""
    if mean is None:
        mean = distribution_mean(distribution)
    addition = 0.0
    count = 0
    for point, instances in distribution:
        addition += ((point - mean) ** 2) * instances
        count += instances
    if count > 1:
        return addition / (count - 1)
    return float("nan")


def regression_error(variance: float, population, r_z: float = RZ) -> float | None:
    """
    Error bound of a regression prediction given the variance of the
    distribution it comes from and its population.
    """
    if population > 0 and not math.isnan(variance):
        ppf = stats.chi2.ppf(1 - math.erf(r_z / math.sqrt(2)), population)
        if ppf != 0:
            error = variance * (population - 1) / ppf
            error = error * ((math.sqrt(population) + r_z) ** 2)
            return round(math.sqrt(error / population), PRECISION)
    return None
