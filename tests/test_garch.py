import pytest
import numpy as np
import pandas as pd
from arch.univariate.base import ARCHModelResult

from conftest import simulate_garch
from exceptions import ConvergenceError, InsufficientDataError
from garch.diagnostics import residual_diagnostics
from garch.estimator import GARCHEstimator, filter_volatility, fit_volatility
from models import (
    Distribution,
    EgarchParams,
    GarchParams,
    GjrGarchParams,
    ModelSpec,
    VarianceFamily,
)
from risk.metrics import compute_risk_summary


def test_parameter_recovery(fitted_garch):
    """GARCH(1,1) fit recovers the simulating parameters"""
    params = fitted_garch.variance
    assert isinstance(params, GarchParams)
    assert params.alpha[0] == pytest.approx(0.08, abs=0.05)
    assert params.beta[0] == pytest.approx(0.90, abs=0.05)
    assert params.omega > 0
    assert fitted_garch.converged
    assert fitted_garch.shape > 2


def test_var_negative_on_synthetic(fitted_garch):
    summary = compute_risk_summary(fitted_garch, alpha=0.05)
    assert summary.value_at_risk < 0


def test_fit_on_500_observations(short_returns):
    model = fit_volatility(short_returns)
    assert model.variance.alpha[0] == pytest.approx(0.08, abs=0.05)
    assert model.variance.beta[0] == pytest.approx(0.90, abs=0.05)
    assert compute_risk_summary(model, alpha=0.05).value_at_risk < 0


def test_estimation_error_shrinks_with_sample_size():
    """Average alpha/beta error over several paths is smaller with more data"""
    def error(n, seed):
        params = fit_volatility(simulate_garch(n, seed=seed)).variance
        return abs(params.alpha[0] - 0.08) + abs(params.beta[0] - 0.90)

    seeds = [42, 7, 1]
    short_error = np.mean([error(500, seed) for seed in seeds])
    long_error = np.mean([error(3000, seed) for seed in seeds])
    assert long_error <= short_error


def test_outputs_in_original_units(fitted_garch, garch_returns):
    """Conditional volatility is reported in decimal returns, aligned with the input"""
    assert fitted_garch.sigma.index.equals(garch_returns.index)
    assert np.all(fitted_garch.sigma > 0)
    # Unconditional sd of the simulated process is sqrt(1e-6 / 0.02) ~ 0.007
    assert 0.002 < fitted_garch.sigma.mean() < 0.02
    assert fitted_garch.variance.unconditional_variance() == pytest.approx(5e-5, rel=0.5)


def test_standard_errors_reported(fitted_garch):
    assert fitted_garch.hessian_invertible
    assert set(fitted_garch.standard_errors) == set(fitted_garch.params)


@pytest.mark.parametrize('family, params_type', [
    (VarianceFamily.THRESHOLD, GjrGarchParams),
    (VarianceFamily.EXPONENTIAL, EgarchParams),
])
def test_asymmetric_families(garch_returns, family, params_type):
    model = fit_volatility(garch_returns, ModelSpec(family=family))
    assert isinstance(model.variance, params_type)
    assert len(model.variance.gamma) == 1
    assert model.variance.is_stationary()
    assert np.all(model.sigma > 0)


def test_normal_distribution(garch_returns):
    model = fit_volatility(garch_returns, ModelSpec(distribution=Distribution.NORMAL))
    assert np.isinf(model.shape)


def test_ar_mean(garch_returns):
    model = fit_volatility(garch_returns, ModelSpec(mean_order=(1, 0)))
    assert len(model.mean.ar) == 1
    assert abs(model.mean.ar[0]) < 0.2


def test_ar_mean_on_named_series(short_returns):
    """AR coefficients are read whatever the return series is called"""
    returns = short_returns.rename('SPX')
    model = fit_volatility(returns, ModelSpec(mean_order=(2, 0)))
    assert len(model.mean.ar) == 2
    assert model.mean.ar == (model.params['SPX[1]'], model.params['SPX[2]'])


def test_unreadable_estimates_raise_convergence_error(short_returns, monkeypatch):
    estimator = GARCHEstimator()

    def missing_term(params, spec):
        raise KeyError('Const')

    monkeypatch.setattr(estimator, '_mean_params', missing_term)
    with pytest.raises(ConvergenceError):
        estimator.fit(short_returns)


def test_singular_hessian_raises_with_partial_model(short_returns, monkeypatch):
    def singular(self):
        raise np.linalg.LinAlgError("Singular matrix")

    monkeypatch.setattr(ARCHModelResult, 'std_err', property(singular))
    with pytest.raises(ConvergenceError) as excinfo:
        fit_volatility(short_returns)

    partial = excinfo.value.partial
    assert partial is not None
    assert partial.standard_errors is None
    assert not partial.hessian_invertible
    assert partial.variance.alpha[0] > 0


def test_spec_rejects_moving_average():
    with pytest.raises(ValueError):
        ModelSpec(mean_order=(0, 1))


def test_spec_parses_aliases():
    spec = ModelSpec(family='gjr', distribution='t')
    assert spec.family is VarianceFamily.THRESHOLD
    assert spec.distribution is Distribution.STUDENT_T
    assert hash(spec) == hash(ModelSpec(family=VarianceFamily.THRESHOLD))


def test_non_stationary_estimate_rejected(garch_returns, monkeypatch):
    """An estimate with alpha + beta >= 1 raises and carries the partial model"""
    estimator = GARCHEstimator()
    monkeypatch.setattr(
        estimator, '_variance_params',
        lambda params, spec: GarchParams(omega=1e-6, alpha=(0.3,), beta=(0.75,))
    )
    with pytest.raises(ConvergenceError) as excinfo:
        estimator.fit(garch_returns)
    assert excinfo.value.partial is not None
    assert excinfo.value.partial.variance.persistence >= 1


def test_stationarity_rules():
    assert not GarchParams(1e-6, (0.15,), (0.9,)).is_stationary()
    assert GjrGarchParams(1e-6, (0.05,), (0.1,), (0.89,)).is_stationary()
    assert not GjrGarchParams(1e-6, (0.05,), (0.14,), (0.89,)).is_stationary()
    assert not EgarchParams(-0.1, (0.1,), (-0.05,), (1.0,)).is_stationary()


def test_missing_values_rejected(garch_returns):
    returns = garch_returns.copy()
    returns.iloc[10] = np.nan
    with pytest.raises(ValueError):
        fit_volatility(returns)


def test_too_few_observations():
    with pytest.raises(InsufficientDataError):
        fit_volatility(pd.Series([0.01, -0.01, 0.02]))


def test_filter_keeps_parameters(fitted_garch, garch_returns):
    window = garch_returns.iloc[-500:]
    filtered = filter_volatility(fitted_garch, window)

    assert filtered.variance == fitted_garch.variance
    assert filtered.params == fitted_garch.params
    assert filtered.sigma.index.equals(window.index)
    assert np.all(filtered.sigma > 0)


def test_filter_reproduces_fit(fitted_garch, garch_returns):
    filtered = filter_volatility(fitted_garch, garch_returns)
    # Start-up values can differ slightly; the recursion forgets them geometrically
    np.testing.assert_allclose(
        filtered.sigma.to_numpy()[-500:], fitted_garch.sigma.to_numpy()[-500:], rtol=1e-6
    )


def test_residual_diagnostics(fitted_garch):
    table = residual_diagnostics(fitted_garch, lags=5)
    assert list(table.index.get_level_values('series').unique()) == ['standardized', 'squared']
    assert len(table) == 10
    assert table['lb_pvalue'].between(0, 1).all()


def test_residual_diagnostics_invalid_lags(fitted_garch):
    with pytest.raises(ValueError):
        residual_diagnostics(fitted_garch, lags=0)
