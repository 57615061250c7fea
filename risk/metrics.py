"""Risk metric calculations built on fitted volatility models."""

import logging
import math
from typing import Tuple, Union

import numpy as np
import pandas as pd
from scipy.stats import norm, t as student_t

from config import DEFAULT_CONFIG
from exceptions import DegenerateDistributionError, InsufficientDataError, ZeroVarianceError
from garch.forecaster import forecast_volatility
from models import FittedVolatilityModel, GjrGarchParams, RiskSummary, VarianceParams

logger = logging.getLogger(__name__)


def _check_alpha(alpha: float):
    if not 0 < alpha < 1:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")


def student_t_quantile(alpha: float, shape: float) -> float:
    """
    Lower-tail quantile of a unit-variance Student-t (normal when shape is infinite).

    Raises:
        DegenerateDistributionError: shape <= 2, the variance does not exist
    """
    _check_alpha(alpha)
    if math.isinf(shape):
        return float(norm.ppf(alpha))
    # Unlike the raw t quantile, this needs a finite variance, so 1 < shape <= 2
    # is rejected too. arch bounds fitted shapes above 2.
    if shape <= 2:
        raise DegenerateDistributionError(
            f"Student-t shape must exceed 2 for a unit-variance quantile, got {shape}"
        )
    return float(student_t.ppf(alpha, shape) * math.sqrt((shape - 2.0) / shape))


def value_at_risk(mean: float, sigma: float, shape: float, alpha: float = 0.05) -> float:
    """
    Parametric VaR as a return threshold: mean + sigma * Q(alpha).

    Args:
        mean: Conditional mean return
        sigma: Conditional standard deviation
        shape: Student-t degrees of freedom (inf for normal)
        alpha: Tail probability

    Returns:
        VaR (negative for a loss threshold at usual alpha)
    """
    if sigma < 0 or not np.isfinite(sigma):
        raise ValueError(f"sigma must be a finite non-negative number, got {sigma}")
    return float(mean + sigma * student_t_quantile(alpha, shape))


def leverage_adjusted_sigma(sigma: float, params: VarianceParams) -> float:
    """
    Inflate sigma for the leverage effect of a threshold (GJR) model.

    Scales by sqrt((alpha + gamma + beta) / (alpha + gamma/2 + beta)), i.e. the
    persistence after a negative shock relative to the average persistence.
    This is an approximation, not an exact conditional quantity. Other
    families are returned unchanged.
    """
    if not isinstance(params, GjrGarchParams):
        return float(sigma)

    a, g, b = sum(params.alpha), sum(params.gamma), sum(params.beta)
    average = a + 0.5 * g + b
    if average <= 0:
        return float(sigma)
    return float(sigma * math.sqrt((a + g + b) / average))


def expected_shortfall(shape: float, alpha: float = 0.05) -> float:
    """
    Expected shortfall of a standard Student-t, as a positive tail magnitude.

        ES = t_pdf(q; shape) / alpha * (shape + q^2) / (shape - 1),  q = t_ppf(alpha; shape)

    The normal limit phi(z)/alpha is used when shape is infinite.

    Raises:
        DegenerateDistributionError: shape <= 1, the mean of the tail does not exist
    """
    _check_alpha(alpha)
    if math.isinf(shape):
        return float(norm.pdf(norm.ppf(alpha)) / alpha)
    if shape <= 1:
        raise DegenerateDistributionError(
            f"Student-t shape must exceed 1 for expected shortfall, got {shape}"
        )
    q = student_t.ppf(alpha, shape)
    return float(student_t.pdf(q, shape) / alpha * (shape + q ** 2) / (shape - 1.0))


def sharpe_ratio(returns: Union[pd.Series, np.ndarray], risk_free_annual_rate: float = 0.0,
                 trading_days: int = 252) -> float:
    """
    Annualized Sharpe ratio of daily returns.

    Args:
        returns: Daily returns
        risk_free_annual_rate: Annual risk-free rate, converted to daily by / trading_days
        trading_days: Trading days per year

    Raises:
        InsufficientDataError: fewer than 2 returns
        ZeroVarianceError: excess returns are constant
    """
    values = np.asarray(returns, dtype=float)
    values = values[np.isfinite(values)]
    if len(values) < 2:
        raise InsufficientDataError(f"Sharpe ratio needs at least 2 returns, got {len(values)}")

    excess = values - risk_free_annual_rate / trading_days
    if np.ptp(excess) == 0:
        raise ZeroVarianceError("Returns have zero variance")

    std = np.std(excess, ddof=1)
    return float(np.mean(excess) / std * np.sqrt(trading_days))


def forecast_tail_risk(model: FittedVolatilityModel, alpha: float = 0.05,
                       horizon: int = 1) -> Tuple[float, float]:
    """
    VaR and ES of the horizon-step return implied by a fitted model.

    Step means and variances are summed over the horizon; threshold models
    get the leverage adjustment on sigma.

    Returns:
        (VaR, ES), both expressed as returns
    """
    _check_alpha(alpha)

    steps = forecast_volatility(model, horizon)
    mean = sum(step.mean for step in steps)
    sigma = math.sqrt(sum(step.variance for step in steps))
    sigma = leverage_adjusted_sigma(sigma, model.variance)

    var = value_at_risk(mean, sigma, model.shape, alpha)

    # expected_shortfall() is in standard-t units; rescale to unit variance
    unit_scale = 1.0 if math.isinf(model.shape) else math.sqrt((model.shape - 2.0) / model.shape)
    es = mean - sigma * unit_scale * expected_shortfall(model.shape, alpha)
    return var, es


def compute_risk_summary(model: FittedVolatilityModel, alpha: float = 0.05, horizon: int = 1,
                         risk_free_rate: float = 0.0,
                         trading_days: int = None) -> RiskSummary:
    """
    VaR, ES and Sharpe ratio from a fitted model.

    The horizon-step forecast is aggregated by summing the step means and
    variances. Threshold models get the leverage adjustment on sigma.

    Args:
        model: Fitted volatility model
        alpha: Tail probability
        horizon: Holding period in days
        risk_free_rate: Annual risk-free rate for the Sharpe ratio
        trading_days: Annualization factor, defaults to configuration

    Returns:
        RiskSummary with VaR and ES expressed as returns
    """
    trading_days = trading_days or DEFAULT_CONFIG.trading_days

    var, es = forecast_tail_risk(model, alpha, horizon)
    sharpe = sharpe_ratio(model.returns, risk_free_rate, trading_days)

    logger.info(
        f"Risk summary {model.spec.label} h={horizon} alpha={alpha}: "
        f"VaR={var:.6f}, ES={es:.6f}, Sharpe={sharpe:.4f}"
    )
    return RiskSummary(
        value_at_risk=var,
        expected_shortfall=es,
        sharpe_ratio=sharpe,
        alpha=alpha,
        horizon=int(horizon)
    )
