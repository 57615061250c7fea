"""Walk-forward backtesting and VaR coverage tests."""

from .coverage import christoffersen_test, coverage_report, kupiec_test
from .rolling import RollingBacktestEngine, run_rolling_backtest

__all__ = [
    'RollingBacktestEngine', 'run_rolling_backtest',
    'kupiec_test', 'christoffersen_test', 'coverage_report',
]
