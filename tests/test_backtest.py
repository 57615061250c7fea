import pytest
import numpy as np
from arch.univariate.base import ARCHModelResult

import backtest.rolling as rolling
from backtest.coverage import christoffersen_test, coverage_report, kupiec_test
from backtest.rolling import RollingBacktestEngine, run_rolling_backtest
from exceptions import WindowTooLargeError
from models import ModelSpec


@pytest.fixture(scope='module')
def backtest_returns(garch_returns):
    return garch_returns.iloc[:560]


@pytest.fixture(scope='module')
def backtest_result(backtest_returns):
    return run_rolling_backtest(backtest_returns, window_size=500, refit_interval=20, alpha=0.05)


def test_record_count_and_dates(backtest_result, backtest_returns):
    assert len(backtest_result) == 60
    frame = backtest_result.to_dataframe()
    assert frame.index.equals(backtest_returns.index[500:])
    np.testing.assert_allclose(frame['realized'].to_numpy(), backtest_returns.iloc[500:].to_numpy())


def test_refit_schedule(backtest_result):
    frame = backtest_result.to_dataframe()
    refit_positions = list(np.flatnonzero(frame['refit'].to_numpy()))
    assert refit_positions == [0, 20, 40]
    assert backtest_result.n_refits == 3


def test_forecasts_present_and_ordered(backtest_result):
    frame = backtest_result.to_dataframe()
    assert frame['var'].notna().all()
    assert (frame['var'] < 0).all()
    # ES lies beyond VaR in the loss tail
    assert (frame['es'] < frame['var']).all()
    assert not backtest_result.failures


def test_exceedance_flags(backtest_result):
    frame = backtest_result.to_dataframe()
    expected = frame['realized'] < frame['var']
    assert (frame['exceeded'] == expected).all()


def test_coverage_report(backtest_result):
    report = backtest_result.coverage()
    assert set(report) == {'kupiec', 'christoffersen', 'joint'}
    assert report['kupiec']['n_obs'] == 60
    assert 0 <= report['joint']['p_value'] <= 1


def test_window_of_n_minus_one_gives_one_point(backtest_returns):
    n = len(backtest_returns)
    result = run_rolling_backtest(backtest_returns, window_size=n - 1, refit_interval=5)
    assert len(result) == 1
    assert result.records[0].refit


@pytest.mark.parametrize('window_size', [0, 560, 1000])
def test_window_bounds(backtest_returns, window_size):
    with pytest.raises(WindowTooLargeError) as excinfo:
        run_rolling_backtest(backtest_returns, window_size=window_size)
    assert excinfo.value.max_window == 559
    assert "between 1 and 559" in str(excinfo.value)


def test_invalid_refit_interval(backtest_returns):
    with pytest.raises(ValueError):
        run_rolling_backtest(backtest_returns, window_size=500, refit_interval=0)


def test_failed_refit_yields_nan_and_reuses_parameters(backtest_returns, monkeypatch):
    """The second refit fails: its step is NaN, later steps reuse the first fit"""
    original = rolling._fit_window

    def flaky_fit(args):
        position = args[0]
        if position == 510:
            return position, None, "ConvergenceError: forced failure"
        return original(args)

    monkeypatch.setattr(rolling, '_fit_window', flaky_fit)
    result = run_rolling_backtest(backtest_returns, window_size=500, refit_interval=10)
    frame = result.to_dataframe()

    assert np.isnan(frame['var'].iloc[10])
    assert np.isnan(frame['es'].iloc[10])
    assert frame['var'].iloc[11:20].notna().all()
    assert len(result.failures) == 1
    # Missing points are excluded from the exceedance series
    assert len(result.exceedances()) == len(frame) - 1


def test_no_successful_fit_stays_nan(backtest_returns, monkeypatch):
    def failing_fit(args):
        position = args[0]
        return position, None, "ConvergenceError: forced failure"

    monkeypatch.setattr(rolling, '_fit_window', failing_fit)
    result = run_rolling_backtest(backtest_returns.iloc[:520], window_size=500, refit_interval=50)
    frame = result.to_dataframe()
    assert frame['var'].isna().all()
    assert len(frame) == 20


def test_autoregressive_mean_backtest(backtest_returns):
    result = run_rolling_backtest(
        backtest_returns, ModelSpec(mean_order=(1, 0)), window_size=500, refit_interval=20
    )
    frame = result.to_dataframe()
    assert len(frame) == 60
    assert frame['var'].notna().all()
    assert not result.failures


def test_singular_hessian_refit_is_isolated(backtest_returns, monkeypatch):
    def singular(self):
        raise np.linalg.LinAlgError("Singular matrix")

    monkeypatch.setattr(ARCHModelResult, 'std_err', property(singular))
    result = run_rolling_backtest(backtest_returns.iloc[:520], window_size=500, refit_interval=50)
    frame = result.to_dataframe()

    assert len(frame) == 20
    assert frame['var'].isna().all()
    assert len(result.failures) == 1
    assert 'ConvergenceError' in result.failures[0][1]


def test_refit_positions():
    engine = RollingBacktestEngine(ModelSpec(), window_size=100, refit_interval=21)
    assert engine.refit_positions(160) == [100, 121, 142]


def test_kupiec_exact_rate_not_rejected():
    flags = np.zeros(100, dtype=bool)
    flags[::20] = True
    result = kupiec_test(flags, 0.05)
    assert result['n_exceedances'] == 5
    assert result['statistic'] == pytest.approx(0.0, abs=1e-10)
    assert result['p_value'] == pytest.approx(1.0)


def test_kupiec_too_many_exceedances_rejected():
    flags = np.zeros(250, dtype=bool)
    flags[:40] = True
    assert kupiec_test(flags, 0.01)['p_value'] < 0.01


def test_kupiec_handles_zero_exceedances():
    result = kupiec_test(np.zeros(250, dtype=bool), 0.05)
    assert np.isfinite(result['statistic'])
    assert result['p_value'] < 0.05


def test_christoffersen_detects_clustering():
    flags = np.zeros(500, dtype=bool)
    flags[100:125] = True
    result = christoffersen_test(flags)
    assert result['n11'] == 24
    assert result['p_value'] < 0.01


def test_coverage_report_joint_statistic():
    flags = np.zeros(200, dtype=bool)
    flags[::25] = True
    report = coverage_report(flags, 0.05)
    assert report['joint']['statistic'] == pytest.approx(
        report['kupiec']['statistic'] + report['christoffersen']['statistic']
    )
