"""
GARCH modeling package for volatility analysis.
Implements return preparation, estimation, forecasting and residual checks.
"""

from .data_prep import GarchDataPrep, build_returns
from .estimator import GARCHEstimator, filter_volatility, fit_volatility
from .forecaster import GARCHForecaster, forecast_volatility
from .diagnostics import residual_diagnostics

__all__ = [
    'GarchDataPrep', 'build_returns',
    'GARCHEstimator', 'fit_volatility', 'filter_volatility',
    'GARCHForecaster', 'forecast_volatility',
    'residual_diagnostics',
]
