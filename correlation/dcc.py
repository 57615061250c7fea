"""
Dynamic conditional correlation (DCC) on top of univariate GARCH fits.

    Q_t = (1 - a - b) * Q_bar + a * z_{t-1} z_{t-1}' + b * Q_{t-1}
    R_t = diag(Q_t)^{-1/2} Q_t diag(Q_t)^{-1/2}

z_t are the devolatized residuals of each asset and Q_bar their
unconditional second-moment matrix. (a, b) are estimated by maximizing the
correlation part of the Gaussian quasi-likelihood, with the univariate
volatility models held fixed.
"""

import logging
from concurrent.futures import ProcessPoolExecutor
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.optimize import minimize

from config import DEFAULT_CONFIG, RiskConfig
from exceptions import ConvergenceError, InsufficientAssetsError
from garch.estimator import fit_volatility
from models import FittedCorrelationModel, FittedVolatilityModel, ModelSpec

logger = logging.getLogger(__name__)

# Starting point for (a, b) and the margin kept below a + b = 1
DCC_START = (0.05, 0.90)
STATIONARITY_MARGIN = 1e-6


def renormalize_correlation(matrix: np.ndarray) -> np.ndarray:
    """
    Force a candidate correlation matrix to be a valid one.

    The matrix is symmetrized, its diagonal set to exactly 1 and entries clipped
    to [-1, 1]. If it is still not positive semi-definite, the off-diagonal part
    is shrunk toward zero by the smallest factor that restores PSD.
    """
    r = 0.5 * (matrix + matrix.T)
    r = np.clip(r, -1.0, 1.0)
    np.fill_diagonal(r, 1.0)

    min_eig = np.linalg.eigvalsh(r).min()
    if min_eig < 0:
        # Eigenvalues of I + s(R - I) are 1 + s(lambda - 1)
        shrink = min(1.0, 1.0 / (1.0 - min_eig))
        off_diagonal = r - np.eye(len(r))
        r = np.eye(len(r)) + shrink * off_diagonal
        logger.debug(f"Correlation matrix not PSD (min eigenvalue {min_eig:.3e}), shrunk by {shrink:.6f}")
    return r


def dcc_recursion(z: np.ndarray, a: float, b: float, q_bar: np.ndarray) -> np.ndarray:
    """
    Run the DCC recursion over standardized residuals.

    Args:
        z: (T, N) standardized residuals
        a, b: DCC news and persistence coefficients
        q_bar: (N, N) unconditional matrix, also used as Q_0

    Returns:
        (T, N, N) array of raw correlation matrices R_t
    """
    n_obs, n_assets = z.shape
    correlations = np.empty((n_obs, n_assets, n_assets))
    q = q_bar.copy()
    for t in range(n_obs):
        if t > 0:
            q = (1.0 - a - b) * q_bar + a * np.outer(z[t - 1], z[t - 1]) + b * q
        d = 1.0 / np.sqrt(np.diag(q))
        correlations[t] = q * np.outer(d, d)
    return correlations


def _correlation_loglik(z: np.ndarray, correlations: np.ndarray) -> float:
    """Correlation part of the Gaussian log-likelihood, -0.5 * sum(log|R_t| + z'R_t^-1 z - z'z)"""
    total = 0.0
    for z_t, r_t in zip(z, correlations):
        sign, log_det = np.linalg.slogdet(r_t)
        if sign <= 0:
            raise np.linalg.LinAlgError("Correlation matrix is not positive definite")
        quad = z_t @ np.linalg.solve(r_t, z_t)
        total += log_det + quad - z_t @ z_t
    return -0.5 * total


def _fit_asset(args: Tuple[str, pd.Series, ModelSpec, RiskConfig]) -> Tuple[str, FittedVolatilityModel]:
    """Fit one asset; module level so it can be sent to a worker process"""
    asset, returns, spec, config = args
    return asset, fit_volatility(returns, spec, config=config)


class DCCEstimator:
    """Two-step DCC(1,1) estimator"""

    def __init__(self, max_workers: Optional[int] = None,
                 max_iterations: Optional[int] = None,
                 config: RiskConfig = None):
        """
        Initialize estimator

        Args:
            max_workers: Worker processes for the per-asset fits (None or 1 runs in process)
            max_iterations: Iteration budget of the DCC optimizer
            config: Source of defaults
        """
        self.config = config or DEFAULT_CONFIG
        self.max_workers = max_workers if max_workers is not None else self.config.max_workers
        self.max_iterations = max_iterations or self.config.max_iterations
        self.logger = logging.getLogger('correlation.dcc')

    def fit(self, returns_by_asset: Mapping[str, pd.Series],
            spec: ModelSpec = None) -> FittedCorrelationModel:
        """
        Fit per-asset volatility models then the DCC correlation dynamics.

        Args:
            returns_by_asset: Mapping asset -> return series, identical indexes
            spec: Univariate model configuration shared by all assets

        Returns:
            FittedCorrelationModel

        Raises:
            InsufficientAssetsError: fewer than 2 assets or misaligned indexes
            ConvergenceError: a univariate fit or the DCC optimizer failed
        """
        spec = spec or ModelSpec()
        assets = self._validate_assets(returns_by_asset)

        volatility_models = self._fit_univariate(returns_by_asset, assets, spec)

        z_frame = pd.concat(
            {asset: volatility_models[asset].standardized_residuals for asset in assets},
            axis=1
        ).dropna()
        z = z_frame.to_numpy()
        q_bar = z.T @ z / len(z)

        a, b, loglik = self._optimize(z, q_bar)

        raw = dcc_recursion(z, a, b, q_bar)
        correlations = np.stack([renormalize_correlation(r) for r in raw])

        self.logger.info(
            f"Fitted DCC on {len(assets)} assets x {len(z)} obs: "
            f"a={a:.4f}, b={b:.4f}, loglik={loglik:.2f}"
        )

        return FittedCorrelationModel(
            assets=tuple(assets),
            index=z_frame.index,
            correlations=correlations,
            dcc_alpha=a,
            dcc_beta=b,
            unconditional=q_bar,
            volatility_models=volatility_models,
            converged=True,
            loglikelihood=loglik
        )

    def _validate_assets(self, returns_by_asset: Mapping[str, pd.Series]) -> List[str]:
        assets = list(returns_by_asset.keys())
        if len(assets) < 2:
            raise InsufficientAssetsError(
                f"Correlation model requires at least 2 assets, got {len(assets)}"
            )

        reference = returns_by_asset[assets[0]].index
        for asset in assets[1:]:
            if not returns_by_asset[asset].index.equals(reference):
                raise InsufficientAssetsError(
                    f"Return series for {asset} is not aligned with {assets[0]}"
                )
        return assets

    def _fit_univariate(self, returns_by_asset: Mapping[str, pd.Series],
                        assets: List[str], spec: ModelSpec) -> Dict[str, FittedVolatilityModel]:
        jobs = [(asset, returns_by_asset[asset], spec, self.config) for asset in assets]

        if self.max_workers and self.max_workers > 1:
            self.logger.info(f"Fitting {len(jobs)} volatility models with {self.max_workers} workers")
            with ProcessPoolExecutor(max_workers=self.max_workers) as executor:
                fitted = dict(executor.map(_fit_asset, jobs))
        else:
            fitted = dict(_fit_asset(job) for job in jobs)

        return {asset: fitted[asset] for asset in assets}

    def _optimize(self, z: np.ndarray, q_bar: np.ndarray) -> Tuple[float, float, float]:
        def objective(params):
            a, b = params
            try:
                return -_correlation_loglik(z, dcc_recursion(z, a, b, q_bar))
            except np.linalg.LinAlgError:
                return 1e10

        constraints = [{'type': 'ineq', 'fun': lambda x: 1.0 - STATIONARITY_MARGIN - x[0] - x[1]}]
        bounds = [(0.0, 1.0), (0.0, 1.0)]

        try:
            result = minimize(
                objective,
                np.array(DCC_START),
                method='SLSQP',
                bounds=bounds,
                constraints=constraints,
                options={'maxiter': self.max_iterations, 'disp': False}
            )
        except (ValueError, np.linalg.LinAlgError) as e:
            raise ConvergenceError(f"DCC optimizer failed: {e}") from e

        if not result.success or not np.all(np.isfinite(result.x)):
            raise ConvergenceError(f"DCC optimizer did not converge: {result.message}")

        a, b = (float(max(v, 0.0)) for v in result.x)
        if a + b >= 1.0:
            raise ConvergenceError(f"DCC estimate is non-stationary: a + b = {a + b:.6f}")

        return a, b, float(-result.fun)


def fit_correlation(returns_by_asset: Mapping[str, pd.Series], spec: ModelSpec = None,
                    max_workers: Optional[int] = None) -> FittedCorrelationModel:
    """Entry point: fit a DCC model over two or more assets."""
    return DCCEstimator(max_workers=max_workers).fit(returns_by_asset, spec)


def latest_correlation(model: FittedCorrelationModel) -> pd.DataFrame:
    """Most recent conditional correlation matrix, labelled by asset"""
    return model.correlation_at(-1)
