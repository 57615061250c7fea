import pytest
import dataclasses
import math
import numpy as np
import pandas as pd
from scipy import integrate, stats

from exceptions import DegenerateDistributionError, InsufficientDataError, ZeroVarianceError
from garch.estimator import fit_volatility
from garch.forecaster import forecast_volatility
from models import GarchParams, GjrGarchParams, ModelSpec, VarianceFamily
from risk.metrics import (
    compute_risk_summary,
    expected_shortfall,
    leverage_adjusted_sigma,
    sharpe_ratio,
    student_t_quantile,
    value_at_risk,
)


def test_expected_shortfall_degenerate_shape():
    with pytest.raises(DegenerateDistributionError):
        expected_shortfall(1.0, 0.05)


def test_expected_shortfall_matches_tail_integral():
    """ES equals minus the mean of a standard t below its alpha-quantile"""
    shape, alpha = 5.0, 0.05
    q = stats.t.ppf(alpha, shape)
    tail_mean, _ = integrate.quad(lambda x: x * stats.t.pdf(x, shape), -np.inf, q)
    assert expected_shortfall(shape, alpha) == pytest.approx(-tail_mean / alpha, rel=1e-6)


def test_expected_shortfall_normal_limit():
    alpha = 0.01
    expected = stats.norm.pdf(stats.norm.ppf(alpha)) / alpha
    assert expected_shortfall(math.inf, alpha) == pytest.approx(expected)
    assert expected_shortfall(1000.0, alpha) == pytest.approx(expected, rel=1e-2)


def test_unit_variance_quantile():
    shape = 6.0
    expected = stats.t.ppf(0.05, shape) * math.sqrt((shape - 2) / shape)
    assert student_t_quantile(0.05, shape) == pytest.approx(expected)
    assert student_t_quantile(0.05, math.inf) == pytest.approx(stats.norm.ppf(0.05))


def test_value_at_risk():
    var = value_at_risk(0.001, 0.02, math.inf, alpha=0.05)
    assert var == pytest.approx(0.001 + 0.02 * stats.norm.ppf(0.05))
    assert var < 0


@pytest.mark.parametrize('shape', [2.0, 1.5])
def test_value_at_risk_degenerate_shape(shape):
    """Shapes without a finite variance have no unit-variance quantile"""
    with pytest.raises(DegenerateDistributionError):
        value_at_risk(0.0, 0.01, shape)
    # The raw t quantile still exists there
    assert np.isfinite(stats.t.ppf(0.05, shape))


@pytest.mark.parametrize('alpha', [0.0, 1.0, -0.1, 1.5])
def test_alpha_bounds(alpha):
    with pytest.raises(ValueError):
        value_at_risk(0.0, 0.01, 8.0, alpha=alpha)
    with pytest.raises(ValueError):
        expected_shortfall(8.0, alpha)


def test_sharpe_ratio_value():
    returns = np.array([0.01, -0.005, 0.002, 0.007, -0.003])
    expected = returns.mean() / returns.std(ddof=1) * math.sqrt(252)
    assert sharpe_ratio(returns) == pytest.approx(expected)


def test_sharpe_ratio_risk_free():
    returns = pd.Series([0.01, -0.005, 0.002, 0.007, -0.003])
    excess = returns - 0.05 / 252
    expected = excess.mean() / excess.std(ddof=1) * math.sqrt(252)
    assert sharpe_ratio(returns, risk_free_annual_rate=0.05) == pytest.approx(expected)


def test_sharpe_ratio_constant_returns():
    with pytest.raises(ZeroVarianceError):
        sharpe_ratio(np.full(50, 0.001))


def test_sharpe_ratio_too_short():
    with pytest.raises(InsufficientDataError):
        sharpe_ratio([0.01])


def test_leverage_adjustment_threshold_only():
    gjr = GjrGarchParams(omega=1e-6, alpha=(0.04,), gamma=(0.08,), beta=(0.88,))
    factor = math.sqrt((0.04 + 0.08 + 0.88) / (0.04 + 0.04 + 0.88))
    assert leverage_adjusted_sigma(0.01, gjr) == pytest.approx(0.01 * factor)

    garch = GarchParams(omega=1e-6, alpha=(0.08,), beta=(0.9,))
    assert leverage_adjusted_sigma(0.01, garch) == 0.01


def test_summary_ordering(fitted_garch):
    summary = compute_risk_summary(fitted_garch, alpha=0.05)
    assert summary.value_at_risk < 0
    assert summary.expected_shortfall < summary.value_at_risk
    assert summary.confidence == pytest.approx(0.95)
    assert summary.horizon == 1
    assert set(summary.to_dict()) == {'VaR', 'ES', 'Sharpe_Ratio', 'alpha', 'confidence', 'horizon'}


def test_summary_horizon_widens_var(fitted_garch):
    one_day = compute_risk_summary(fitted_garch, horizon=1)
    ten_day = compute_risk_summary(fitted_garch, horizon=10)
    assert ten_day.value_at_risk < one_day.value_at_risk
    assert ten_day.sharpe_ratio == pytest.approx(one_day.sharpe_ratio)


def test_summary_smaller_alpha_is_more_extreme(fitted_garch):
    assert compute_risk_summary(fitted_garch, alpha=0.01).value_at_risk < \
        compute_risk_summary(fitted_garch, alpha=0.05).value_at_risk


def test_threshold_summary_applies_leverage(garch_returns):
    fitted = fit_volatility(garch_returns, ModelSpec(family=VarianceFamily.THRESHOLD))
    # Pin a positive leverage term so the adjustment is strictly an inflation
    model = dataclasses.replace(
        fitted, variance=GjrGarchParams(omega=1e-6, alpha=(0.04,), gamma=(0.08,), beta=(0.88,))
    )
    step = forecast_volatility(model, 1)[0]
    sigma = math.sqrt(step.variance)
    adjusted = leverage_adjusted_sigma(sigma, model.variance)
    assert adjusted > sigma

    summary = compute_risk_summary(model, alpha=0.05)
    assert summary.value_at_risk == pytest.approx(
        value_at_risk(step.mean, adjusted, model.shape, alpha=0.05)
    )
    assert summary.value_at_risk < value_at_risk(step.mean, sigma, model.shape, alpha=0.05)
