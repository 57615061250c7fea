"""
VaR coverage tests on a sequence of exceedance flags.

Kupiec (unconditional coverage), Christoffersen (independence of
exceedances) and the joint conditional-coverage test. All are likelihood
ratios compared against a chi-squared distribution.
"""

import logging
from typing import Dict, Sequence, Union

import numpy as np
from scipy.special import xlogy
from scipy.stats import chi2

logger = logging.getLogger(__name__)

Flags = Union[Sequence[bool], np.ndarray]


def _bernoulli_loglik(hits: float, misses: float, p: float) -> float:
    # xlogy keeps 0 * log(0) at 0 for the boundary cases
    return float(xlogy(hits, p) + xlogy(misses, 1.0 - p))


def kupiec_test(exceedances: Flags, alpha: float) -> Dict[str, float]:
    """
    Kupiec proportion-of-failures test.

    H0: the exceedance probability equals alpha.

    Args:
        exceedances: Boolean exceedance flags
        alpha: Tail probability of the VaR forecasts

    Returns:
        Dict with statistic, p_value, n_obs, n_exceedances, rate
    """
    if not 0 < alpha < 1:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")
    flags = np.asarray(exceedances, dtype=bool)
    n = len(flags)
    if n == 0:
        raise ValueError("No exceedance flags to test")

    x = int(flags.sum())
    rate = x / n
    stat = -2.0 * (_bernoulli_loglik(x, n - x, alpha) - _bernoulli_loglik(x, n - x, rate))
    stat = max(stat, 0.0)

    return {
        'statistic': stat,
        'p_value': float(chi2.sf(stat, df=1)),
        'n_obs': n,
        'n_exceedances': x,
        'rate': rate,
    }


def christoffersen_test(exceedances: Flags) -> Dict[str, float]:
    """
    Christoffersen independence test using first-order transition counts.

    H0: an exceedance today is independent of an exceedance yesterday.
    """
    flags = np.asarray(exceedances, dtype=int)
    if len(flags) < 2:
        raise ValueError("Independence test needs at least 2 observations")

    prev, curr = flags[:-1], flags[1:]
    n00 = int(np.sum((prev == 0) & (curr == 0)))
    n01 = int(np.sum((prev == 0) & (curr == 1)))
    n10 = int(np.sum((prev == 1) & (curr == 0)))
    n11 = int(np.sum((prev == 1) & (curr == 1)))

    pi_0 = n01 / (n00 + n01) if (n00 + n01) > 0 else 0.0
    pi_1 = n11 / (n10 + n11) if (n10 + n11) > 0 else 0.0
    pi = (n01 + n11) / (n00 + n01 + n10 + n11)

    null = _bernoulli_loglik(n01 + n11, n00 + n10, pi)
    alt = _bernoulli_loglik(n01, n00, pi_0) + _bernoulli_loglik(n11, n10, pi_1)
    stat = max(-2.0 * (null - alt), 0.0)

    return {
        'statistic': stat,
        'p_value': float(chi2.sf(stat, df=1)),
        'n00': n00,
        'n01': n01,
        'n10': n10,
        'n11': n11,
    }


def coverage_report(exceedances: Flags, alpha: float) -> Dict[str, Dict[str, float]]:
    """
    Run all coverage tests.

    Returns:
        Dict with 'kupiec', 'christoffersen' and 'joint' entries; the joint
        statistic is the sum of the two with 2 degrees of freedom
    """
    kupiec = kupiec_test(exceedances, alpha)
    independence = christoffersen_test(exceedances)

    joint_stat = kupiec['statistic'] + independence['statistic']
    joint = {
        'statistic': joint_stat,
        'p_value': float(chi2.sf(joint_stat, df=2)),
    }

    logger.info(
        f"Coverage: {kupiec['n_exceedances']}/{kupiec['n_obs']} exceedances "
        f"(expected {alpha:.2%}), Kupiec p={kupiec['p_value']:.4f}, "
        f"independence p={independence['p_value']:.4f}, joint p={joint['p_value']:.4f}"
    )
    return {'kupiec': kupiec, 'christoffersen': independence, 'joint': joint}
