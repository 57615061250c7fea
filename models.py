"""Common data models used across the project."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from exceptions import InsufficientAssetsError


class VarianceFamily(Enum):
    """Conditional variance recursions supported by the estimator"""
    SYMMETRIC = 'garch'
    THRESHOLD = 'gjrgarch'
    EXPONENTIAL = 'egarch'

    @classmethod
    def parse(cls, name: Union[str, 'VarianceFamily']) -> 'VarianceFamily':
        """Accept enum members, values or common aliases ('sgarch', 'gjr', ...)"""
        if isinstance(name, cls):
            return name
        aliases = {
            'garch': cls.SYMMETRIC, 'sgarch': cls.SYMMETRIC, 'symmetric': cls.SYMMETRIC,
            'gjrgarch': cls.THRESHOLD, 'gjr': cls.THRESHOLD, 'gjr-garch': cls.THRESHOLD,
            'threshold': cls.THRESHOLD, 'asymmetric-threshold': cls.THRESHOLD,
            'egarch': cls.EXPONENTIAL, 'exponential': cls.EXPONENTIAL,
        }
        key = str(name).strip().lower()
        if key not in aliases:
            raise ValueError(f"Unknown variance family: {name!r}")
        return aliases[key]


class Distribution(Enum):
    """Innovation distributions"""
    STUDENT_T = 'studentst'
    NORMAL = 'normal'

    @classmethod
    def parse(cls, name: Union[str, 'Distribution']) -> 'Distribution':
        if isinstance(name, cls):
            return name
        key = str(name).strip().lower()
        if key in ('t', 'studentst', 'student-t', 'std'):
            return cls.STUDENT_T
        if key in ('normal', 'norm', 'gaussian'):
            return cls.NORMAL
        raise ValueError(f"Unknown distribution: {name!r}")


@dataclass(frozen=True)
class ModelSpec:
    """Univariate model configuration, hashable so it can key caches"""
    family: VarianceFamily = VarianceFamily.SYMMETRIC
    variance_order: Tuple[int, int] = (1, 1)  # (ARCH lags p, GARCH lags q)
    mean_order: Tuple[int, int] = (0, 0)  # (AR lags, MA lags)
    distribution: Distribution = Distribution.STUDENT_T

    def __post_init__(self):
        object.__setattr__(self, 'family', VarianceFamily.parse(self.family))
        object.__setattr__(self, 'distribution', Distribution.parse(self.distribution))
        object.__setattr__(self, 'variance_order', tuple(int(v) for v in self.variance_order))
        object.__setattr__(self, 'mean_order', tuple(int(v) for v in self.mean_order))

        p, q = self.variance_order
        if p < 1 or q < 0:
            raise ValueError(f"variance_order must satisfy p >= 1, q >= 0, got {self.variance_order}")
        ar, ma = self.mean_order
        if ar < 0 or ma < 0:
            raise ValueError(f"mean_order must be non-negative, got {self.mean_order}")
        if ma > 0:
            raise ValueError("Moving-average mean terms are not supported; use AR lags")

    @property
    def label(self) -> str:
        p, q = self.variance_order
        return f"{self.family.value}({p},{q})-{self.distribution.value}"


@dataclass(frozen=True)
class MeanParams:
    """Conditional mean: constant plus optional AR coefficients"""
    mu: float
    ar: Tuple[float, ...] = ()


@dataclass(frozen=True)
class GarchParams:
    """sigma2_t = omega + sum(alpha_i * eps2_{t-i}) + sum(beta_j * sigma2_{t-j})"""
    omega: float
    alpha: Tuple[float, ...]
    beta: Tuple[float, ...]
    family: ClassVar[VarianceFamily] = VarianceFamily.SYMMETRIC

    @property
    def persistence(self) -> float:
        return float(sum(self.alpha) + sum(self.beta))

    def is_stationary(self) -> bool:
        return self.persistence < 1.0

    def unconditional_variance(self) -> float:
        if not self.is_stationary():
            return math.inf
        return self.omega / (1.0 - self.persistence)


@dataclass(frozen=True)
class GjrGarchParams:
    """GARCH recursion plus gamma * eps2_{t-1} * 1[eps_{t-1} < 0]"""
    omega: float
    alpha: Tuple[float, ...]
    gamma: Tuple[float, ...]
    beta: Tuple[float, ...]
    family: ClassVar[VarianceFamily] = VarianceFamily.THRESHOLD

    @property
    def persistence(self) -> float:
        # Negative shocks occur half the time under a symmetric innovation
        return float(sum(self.alpha) + 0.5 * sum(self.gamma) + sum(self.beta))

    def is_stationary(self) -> bool:
        return self.persistence < 1.0

    def unconditional_variance(self) -> float:
        if not self.is_stationary():
            return math.inf
        return self.omega / (1.0 - self.persistence)


@dataclass(frozen=True)
class EgarchParams:
    """
    log sigma2_t = omega + sum(alpha_i * (|e_{t-i}| - sqrt(2/pi)))
                   + sum(gamma_j * e_{t-j}) + sum(beta_k * log sigma2_{t-k})

    e_t is the standardized residual.
    """
    omega: float
    alpha: Tuple[float, ...]
    gamma: Tuple[float, ...]
    beta: Tuple[float, ...]
    family: ClassVar[VarianceFamily] = VarianceFamily.EXPONENTIAL

    @property
    def persistence(self) -> float:
        return float(sum(self.beta))

    def is_stationary(self) -> bool:
        return abs(self.persistence) < 1.0


VarianceParams = Union[GarchParams, GjrGarchParams, EgarchParams]


@dataclass(frozen=True, eq=False)
class FittedVolatilityModel:
    """Container for a fitted univariate volatility model"""
    spec: ModelSpec
    mean: MeanParams
    variance: VarianceParams
    shape: float  # Student-t degrees of freedom, inf for normal innovations
    params: Dict[str, float]  # raw optimizer parameters, scaled units
    returns: pd.Series
    residuals: pd.Series
    sigma: pd.Series  # conditional standard deviation, same index as returns
    converged: bool
    standard_errors: Optional[Dict[str, float]] = None
    loglikelihood: float = float('nan')
    aic: float = float('nan')
    bic: float = float('nan')
    scale: float = 100.0

    @property
    def family(self) -> VarianceFamily:
        return self.spec.family

    @property
    def hessian_invertible(self) -> bool:
        return self.standard_errors is not None

    @property
    def standardized_residuals(self) -> pd.Series:
        return self.residuals / self.sigma

    @property
    def nobs(self) -> int:
        return int(len(self.returns))


@dataclass(frozen=True)
class ForecastStep:
    """One step of a volatility forecast"""
    step: int
    mean: float
    variance: float

    @property
    def volatility(self) -> float:
        return math.sqrt(self.variance)


@dataclass(frozen=True, eq=False)
class FittedCorrelationModel:
    """Dynamic conditional correlation fit over two or more assets"""
    assets: Tuple[str, ...]
    index: pd.Index
    correlations: np.ndarray  # shape (T, N, N)
    dcc_alpha: float
    dcc_beta: float
    unconditional: np.ndarray  # Q-bar, shape (N, N)
    volatility_models: Dict[str, FittedVolatilityModel]
    converged: bool = True
    loglikelihood: float = float('nan')

    def __post_init__(self):
        if len(self.assets) < 2:
            raise InsufficientAssetsError(
                f"Correlation model requires at least 2 assets, got {len(self.assets)}"
            )
        expected = (len(self.index), len(self.assets), len(self.assets))
        if self.correlations.shape != expected:
            raise ValueError(f"Correlation array shape {self.correlations.shape} != {expected}")

    @property
    def persistence(self) -> float:
        return self.dcc_alpha + self.dcc_beta

    def correlation_at(self, position: int) -> pd.DataFrame:
        """Correlation matrix at an integer position (negative counts from the end)"""
        return pd.DataFrame(
            self.correlations[position],
            index=list(self.assets),
            columns=list(self.assets)
        )

    def correlation_series(self, first: str, second: str) -> pd.Series:
        """Pairwise correlation path between two assets"""
        i = self.assets.index(first)
        j = self.assets.index(second)
        return pd.Series(self.correlations[:, i, j], index=self.index, name=f"{first}/{second}")

    def conditional_covariance(self) -> np.ndarray:
        """H_t = D_t R_t D_t with D_t the diagonal of conditional volatilities"""
        vols = np.column_stack([
            self.volatility_models[asset].sigma.reindex(self.index).to_numpy()
            for asset in self.assets
        ])
        return vols[:, :, None] * self.correlations * vols[:, None, :]


@dataclass(frozen=True)
class BacktestRecord:
    """One-step-ahead risk forecast for a single out-of-sample date"""
    timestamp: datetime
    var: float
    es: float
    refit: bool
    realized: float

    @property
    def missing(self) -> bool:
        return bool(np.isnan(self.var))

    @property
    def exceeded(self) -> bool:
        return (not self.missing) and self.realized < self.var


@dataclass
class RollingBacktestResult:
    """Ordered walk-forward forecasts covering the out-of-sample horizon"""
    spec: ModelSpec
    window_size: int
    refit_interval: int
    alpha: float
    records: List[BacktestRecord] = field(default_factory=list)
    failures: List[Tuple[datetime, str]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)

    @property
    def n_refits(self) -> int:
        return sum(1 for record in self.records if record.refit)

    def to_dataframe(self) -> pd.DataFrame:
        """Convert records to a DataFrame indexed by forecast date"""
        if not self.records:
            raise ValueError("No backtest records available")
        frame = pd.DataFrame([
            {
                'date': record.timestamp,
                'var': record.var,
                'es': record.es,
                'refit': record.refit,
                'realized': record.realized,
                'exceeded': record.exceeded,
            }
            for record in self.records
        ])
        return frame.set_index('date')

    def exceedances(self) -> pd.Series:
        """Boolean exceedance flags over the non-missing forecast points"""
        frame = self.to_dataframe()
        return frame.loc[frame['var'].notna(), 'exceeded'].astype(bool)

    def coverage(self) -> Dict[str, Dict[str, float]]:
        """Kupiec, Christoffersen and joint coverage tests on the exceedances"""
        from backtest.coverage import coverage_report
        return coverage_report(self.exceedances().to_numpy(), self.alpha)


@dataclass(frozen=True)
class RiskSummary:
    """Scalar risk outputs tagged with the tail probability and horizon used"""
    value_at_risk: float
    expected_shortfall: float
    sharpe_ratio: float
    alpha: float
    horizon: int

    @property
    def confidence(self) -> float:
        return 1.0 - self.alpha

    def to_dict(self) -> dict:
        return {
            'VaR': self.value_at_risk,
            'ES': self.expected_shortfall,
            'Sharpe_Ratio': self.sharpe_ratio,
            'alpha': self.alpha,
            'confidence': self.confidence,
            'horizon': self.horizon,
        }
