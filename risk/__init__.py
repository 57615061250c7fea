"""Risk metrics derived from fitted volatility models."""

from .metrics import (
    compute_risk_summary,
    expected_shortfall,
    forecast_tail_risk,
    leverage_adjusted_sigma,
    sharpe_ratio,
    student_t_quantile,
    value_at_risk,
)

__all__ = [
    'compute_risk_summary', 'expected_shortfall', 'forecast_tail_risk', 'leverage_adjusted_sigma',
    'sharpe_ratio', 'student_t_quantile', 'value_at_risk',
]
