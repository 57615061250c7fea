import dataclasses
import logging
import math
from typing import Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd
from arch import arch_model

from config import DEFAULT_CONFIG, RiskConfig
from exceptions import ConvergenceError, InsufficientDataError
from models import (
    Distribution,
    EgarchParams,
    FittedVolatilityModel,
    GarchParams,
    GjrGarchParams,
    MeanParams,
    ModelSpec,
    VarianceFamily,
    VarianceParams,
)

logger = logging.getLogger(__name__)

# arch_model arguments per variance family; asymmetric families carry one gamma lag
ARCH_VOLATILITY = {
    VarianceFamily.SYMMETRIC: ('GARCH', 0),
    VarianceFamily.THRESHOLD: ('GARCH', 1),
    VarianceFamily.EXPONENTIAL: ('EGARCH', 1),
}


def _as_series(returns: Union[pd.Series, np.ndarray]) -> pd.Series:
    if isinstance(returns, pd.Series):
        return returns.astype(float)
    return pd.Series(np.asarray(returns, dtype=float))


def build_arch_model(scaled_returns: pd.Series, spec: ModelSpec):
    """Create the arch model matching a ModelSpec (returns already scaled)"""
    vol, o = ARCH_VOLATILITY[spec.family]
    p, q = spec.variance_order
    ar, _ = spec.mean_order

    kwargs = dict(
        vol=vol,
        p=p,
        o=o,
        q=q,
        dist=spec.distribution.value,
        rescale=False
    )
    if ar > 0:
        kwargs.update(mean='AR', lags=ar)
    else:
        kwargs.update(mean='Constant')

    return arch_model(scaled_returns, **kwargs)


class GARCHEstimator:
    """Estimates univariate GARCH-family models by Student-t maximum likelihood"""

    def __init__(self, max_iterations: int = None,
                 scale: float = None,
                 min_observations: int = 20,
                 config: RiskConfig = None):
        """
        Initialize estimator

        Args:
            max_iterations: Optimizer iteration budget
            scale: Multiplier applied to returns before fitting (percent returns by default)
            min_observations: Minimum number of returns required for a fit
            config: Source of defaults for max_iterations and scale
        """
        config = config or DEFAULT_CONFIG
        self.max_iterations = max_iterations or config.max_iterations
        self.scale = scale or config.return_scale
        self.min_observations = min_observations
        self.logger = logging.getLogger('garch.estimator')

    def _validate_returns(self, returns: pd.Series, spec: ModelSpec):
        if returns.isna().any():
            raise ValueError("Input returns contain missing values")
        if not np.all(np.isfinite(returns.to_numpy())):
            raise ValueError("Input returns contain infinite values")

        p, q = spec.variance_order
        required = max(self.min_observations, 2 * (p + q + sum(spec.mean_order) + 3))
        if len(returns) < required:
            raise InsufficientDataError(
                f"Insufficient observations: {len(returns)} < {required}"
            )

    def fit(self, returns: Union[pd.Series, np.ndarray], spec: ModelSpec = None) -> FittedVolatilityModel:
        """
        Fit a volatility model to a return series.

        Args:
            returns: Log returns in decimal form
            spec: Model configuration, defaults to GARCH(1,1) with Student-t innovations

        Returns:
            FittedVolatilityModel in the original return units

        Raises:
            ConvergenceError: optimizer failure, non-convergence, non-stationary estimate
                or a Hessian that cannot be inverted (partial model attached)
            InsufficientDataError: too few observations
        """
        spec = spec or ModelSpec()
        returns = _as_series(returns)
        self._validate_returns(returns, spec)

        # Scale returns to percentage form for estimation
        model = build_arch_model(returns * self.scale, spec)

        try:
            result = model.fit(
                disp='off',
                show_warning=False,
                options={'maxiter': self.max_iterations},
                update_freq=0
            )
        except Exception as e:
            self.logger.error(f"Error fitting {spec.label}: {str(e)}")
            raise ConvergenceError(f"Optimizer failed for {spec.label}: {e}") from e

        try:
            fitted = self._to_fitted_model(result, returns, spec)
        except (KeyError, ValueError, np.linalg.LinAlgError) as e:
            self.logger.error(f"Error reading {spec.label} estimates: {str(e)}")
            raise ConvergenceError(f"Could not read estimates for {spec.label}: {e}") from e

        if not fitted.converged:
            message = (
                f"{spec.label} did not converge within {self.max_iterations} iterations "
                f"(flag={result.convergence_flag})"
            )
            self.logger.warning(message)
            raise ConvergenceError(message, partial=fitted)

        if not fitted.variance.is_stationary():
            message = (
                f"{spec.label} estimate is non-stationary: "
                f"persistence={fitted.variance.persistence:.6f}"
            )
            self.logger.warning(message)
            raise ConvergenceError(message, partial=fitted)

        valid_sigma = fitted.sigma.dropna()
        if valid_sigma.empty or not np.all(valid_sigma.to_numpy() > 0):
            raise ConvergenceError(f"{spec.label} produced non-positive variances", partial=fitted)

        if not fitted.hessian_invertible:
            message = f"{spec.label} Hessian at the optimum is not invertible"
            self.logger.warning(message)
            raise ConvergenceError(message, partial=fitted)

        self.logger.info(
            f"Fitted {spec.label} on {len(returns)} obs: "
            f"persistence={fitted.variance.persistence:.4f}, shape={fitted.shape:.2f}, "
            f"loglik={fitted.loglikelihood:.2f}"
        )
        return fitted

    def filter(self, model: FittedVolatilityModel,
               returns: Union[pd.Series, np.ndarray]) -> FittedVolatilityModel:
        """
        Re-run the fitted recursion over new returns with the parameters held fixed.

        Args:
            model: Previously fitted model supplying the parameters
            returns: Return window to filter

        Returns:
            FittedVolatilityModel on the new window with the same parameters
        """
        returns = _as_series(returns)
        self._validate_returns(returns, model.spec)

        arch = build_arch_model(returns * model.scale, model.spec)
        fixed = arch.fix(np.array(list(model.params.values()), dtype=float))

        sigma = pd.Series(np.asarray(fixed.conditional_volatility), index=returns.index) / model.scale
        resid = pd.Series(np.asarray(fixed.resid), index=returns.index) / model.scale

        return dataclasses.replace(
            model,
            returns=returns,
            residuals=resid,
            sigma=sigma,
            loglikelihood=float(fixed.loglikelihood),
            aic=float('nan'),
            bic=float('nan')
        )

    def _to_fitted_model(self, result, returns: pd.Series, spec: ModelSpec) -> FittedVolatilityModel:
        """Convert an arch result to original units"""
        params = result.params
        mean = self._mean_params(params, spec)
        variance = self._variance_params(params, spec)
        shape = float(params['nu']) if spec.distribution is Distribution.STUDENT_T else math.inf

        sigma = pd.Series(np.asarray(result.conditional_volatility), index=returns.index) / self.scale
        resid = pd.Series(np.asarray(result.resid), index=returns.index) / self.scale

        return FittedVolatilityModel(
            spec=spec,
            mean=mean,
            variance=variance,
            shape=shape,
            params={name: float(value) for name, value in params.items()},
            returns=returns,
            residuals=resid,
            sigma=sigma,
            converged=result.convergence_flag == 0,
            standard_errors=self._standard_errors(result, spec),
            loglikelihood=float(result.loglikelihood),
            aic=float(result.aic),
            bic=float(result.bic),
            scale=self.scale
        )

    def _standard_errors(self, result, spec: ModelSpec) -> Optional[Dict[str, float]]:
        """Standard errors, or None when the Hessian at the optimum cannot be inverted"""
        try:
            std_err = result.std_err
        except (np.linalg.LinAlgError, ValueError) as e:
            self.logger.debug(f"Hessian not invertible for {spec.label}: {str(e)}")
            return None

        if not np.all(np.isfinite(np.asarray(std_err, dtype=float))):
            self.logger.debug(f"Standard errors unavailable for {spec.label}")
            return None
        return {name: float(value) for name, value in std_err.items()}

    def _mean_params(self, params: pd.Series, spec: ModelSpec) -> MeanParams:
        ar, _ = spec.mean_order
        if ar == 0:
            return MeanParams(mu=float(params['mu']) / self.scale)
        return MeanParams(
            mu=float(params['Const']) / self.scale,
            # AR terms follow the constant; arch names them after the series
            ar=tuple(float(value) for value in params.iloc[1:ar + 1])
        )

    def _variance_params(self, params: pd.Series, spec: ModelSpec) -> VarianceParams:
        p, q = spec.variance_order
        _, o = ARCH_VOLATILITY[spec.family]
        alpha, gamma, beta = _lag_coefficients(params, p, o, q)
        omega = float(params['omega'])

        if spec.family is VarianceFamily.SYMMETRIC:
            return GarchParams(omega=omega / self.scale ** 2, alpha=alpha, beta=beta)
        if spec.family is VarianceFamily.THRESHOLD:
            return GjrGarchParams(omega=omega / self.scale ** 2, alpha=alpha, gamma=gamma, beta=beta)
        if spec.family is VarianceFamily.EXPONENTIAL:
            # log sigma2 shifts by log(scale^2) under rescaling; the standardized shocks do not
            omega = omega - (1.0 - sum(beta)) * math.log(self.scale ** 2)
            return EgarchParams(omega=omega, alpha=alpha, gamma=gamma, beta=beta)
        raise ValueError(f"Unsupported variance family: {spec.family}")


def _lag_coefficients(params: pd.Series, p: int, o: int, q: int) -> Tuple[tuple, tuple, tuple]:
    alpha = tuple(float(params[f'alpha[{i}]']) for i in range(1, p + 1))
    gamma = tuple(float(params[f'gamma[{i}]']) for i in range(1, o + 1))
    beta = tuple(float(params[f'beta[{i}]']) for i in range(1, q + 1))
    return alpha, gamma, beta


def fit_volatility(returns: Union[pd.Series, np.ndarray], spec: ModelSpec = None,
                   config: RiskConfig = None) -> FittedVolatilityModel:
    """Entry point: fit a univariate volatility model."""
    return GARCHEstimator(config=config).fit(returns, spec)


def filter_volatility(model: FittedVolatilityModel,
                      returns: Union[pd.Series, np.ndarray]) -> FittedVolatilityModel:
    """Entry point: re-filter new returns with a fitted model's parameters."""
    return GARCHEstimator(scale=model.scale).filter(model, returns)
