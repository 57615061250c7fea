import logging
import math
from typing import List

import numpy as np
import pandas as pd
from scipy.special import gammaln

from models import (
    EgarchParams,
    FittedVolatilityModel,
    ForecastStep,
    GarchParams,
    GjrGarchParams,
)

logger = logging.getLogger(__name__)

# Centering constant used by the EGARCH recursion for |e_t|
EGARCH_ABS_CONST = math.sqrt(2.0 / math.pi)


def expected_abs_shock(shape: float) -> float:
    """E|e| for a unit-variance innovation with the given Student-t shape (normal when infinite)"""
    if math.isinf(shape):
        return EGARCH_ABS_CONST
    # Unit-variance Student-t: 2 sqrt(nu-2) Gamma((nu+1)/2) / ((nu-1) sqrt(pi) Gamma(nu/2))
    log_value = (
        math.log(2.0) + 0.5 * math.log(shape - 2.0)
        + gammaln((shape + 1.0) / 2.0) - gammaln(shape / 2.0)
        - math.log(shape - 1.0) - 0.5 * math.log(math.pi)
    )
    return math.exp(log_value)


class GARCHForecaster:
    """Extrapolates a fitted volatility recursion beyond the sample"""

    def __init__(self, model: FittedVolatilityModel):
        self.model = model
        self.logger = logging.getLogger('garch.forecaster')

    def forecast(self, horizon: int) -> List[ForecastStep]:
        """
        Iterate the fitted recursion forward from the last in-sample state.

        Future squared shocks are replaced by their conditional expectation, so
        the path uses no information beyond the end of the sample.

        Args:
            horizon: Number of steps ahead (>= 1)

        Returns:
            List of ForecastStep(step, mean, variance) for steps 1..horizon
        """
        if not isinstance(horizon, (int, np.integer)) or isinstance(horizon, bool) or horizon < 1:
            raise ValueError(f"horizon must be an integer >= 1, got {horizon!r}")

        means = self._mean_path(int(horizon))
        variances = self._variance_path(int(horizon))

        if not np.all(np.isfinite(variances)) or np.any(variances <= 0):
            raise ValueError(f"Variance forecast is not strictly positive: {variances}")

        return [
            ForecastStep(step=h + 1, mean=float(means[h]), variance=float(variances[h]))
            for h in range(int(horizon))
        ]

    def _mean_path(self, horizon: int) -> np.ndarray:
        mean = self.model.mean
        if not mean.ar:
            return np.full(horizon, mean.mu)

        # AR(k): y_{T+h} = c + sum(phi_i * y_{T+h-i}), unknown future values replaced by forecasts
        history = list(self.model.returns.to_numpy()[-len(mean.ar):])
        path = []
        for _ in range(horizon):
            value = mean.mu + sum(phi * history[-i] for i, phi in enumerate(mean.ar, start=1))
            path.append(value)
            history.append(value)
        return np.array(path)

    def _variance_path(self, horizon: int) -> np.ndarray:
        params = self.model.variance
        if isinstance(params, (GarchParams, GjrGarchParams)):
            return self._garch_path(params, horizon)
        if isinstance(params, EgarchParams):
            return self._egarch_path(params, horizon)
        raise ValueError(f"Unsupported variance parameters: {type(params).__name__}")

    def _seed_state(self, n_lags: int):
        resid = self.model.residuals.dropna().to_numpy()
        sigma = self.model.sigma.dropna().to_numpy()
        n = max(n_lags, 1)
        return list(resid[-n:]), list(sigma[-n:] ** 2)

    def _garch_path(self, params, horizon: int) -> np.ndarray:
        gamma = getattr(params, 'gamma', ())
        n_lags = max(len(params.alpha), len(gamma), len(params.beta))
        resid, var = self._seed_state(n_lags)
        sq_shocks = [e ** 2 for e in resid]
        neg_shocks = [e ** 2 if e < 0 else 0.0 for e in resid]

        path = []
        for _ in range(horizon):
            sigma2 = (
                params.omega
                + sum(a * sq_shocks[-i] for i, a in enumerate(params.alpha, start=1))
                + sum(g * neg_shocks[-i] for i, g in enumerate(gamma, start=1))
                + sum(b * var[-j] for j, b in enumerate(params.beta, start=1))
            )
            path.append(sigma2)
            var.append(sigma2)
            # E[eps^2] = sigma2, and a symmetric innovation is negative half the time
            sq_shocks.append(sigma2)
            neg_shocks.append(0.5 * sigma2)
        return np.array(path)

    def _egarch_path(self, params: EgarchParams, horizon: int) -> np.ndarray:
        # Extrapolates E[log sigma2]; exp() of it understates E[sigma2] slightly for h > 1
        n_lags = max(len(params.alpha), len(params.gamma), len(params.beta))
        resid, var = self._seed_state(n_lags)
        std_shocks = [e / math.sqrt(v) for e, v in zip(resid, var)]
        log_var = [math.log(v) for v in var]
        abs_shocks = [abs(z) - EGARCH_ABS_CONST for z in std_shocks]
        expected_abs = expected_abs_shock(self.model.shape) - EGARCH_ABS_CONST

        path = []
        for _ in range(horizon):
            log_sigma2 = (
                params.omega
                + sum(a * abs_shocks[-i] for i, a in enumerate(params.alpha, start=1))
                + sum(g * std_shocks[-i] for i, g in enumerate(params.gamma, start=1))
                + sum(b * log_var[-j] for j, b in enumerate(params.beta, start=1))
            )
            path.append(math.exp(log_sigma2))
            log_var.append(log_sigma2)
            abs_shocks.append(expected_abs)
            std_shocks.append(0.0)
        return np.array(path)


def forecast_volatility(model: FittedVolatilityModel, horizon: int) -> List[ForecastStep]:
    """Entry point: multi-step mean and variance forecast."""
    return GARCHForecaster(model).forecast(horizon)


def forecast_frame(steps: List[ForecastStep]) -> pd.DataFrame:
    """Convert forecast steps to a DataFrame indexed by step"""
    return pd.DataFrame(
        {'mean': [s.mean for s in steps], 'variance': [s.variance for s in steps]},
        index=pd.Index([s.step for s in steps], name='step')
    )
