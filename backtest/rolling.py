"""
Walk-forward backtest of one-step VaR/ES forecasts.

For every forecast date t in [window_size, n) the model only sees the
moving window returns[t - window_size : t]. Parameters are re-estimated
every ``refit_interval`` steps; in between, the last successful parameters
are re-filtered over the current window.
"""

import logging
from concurrent.futures import ProcessPoolExecutor
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from config import DEFAULT_CONFIG, RiskConfig
from exceptions import RiskModelError, WindowTooLargeError
from garch.estimator import GARCHEstimator
from models import BacktestRecord, FittedVolatilityModel, ModelSpec, RollingBacktestResult
from risk.metrics import forecast_tail_risk
from utils.progress import ProgressMonitor

logger = logging.getLogger(__name__)

FitOutcome = Tuple[int, Optional[FittedVolatilityModel], Optional[str]]


def _fit_window(args: Tuple[int, pd.Series, ModelSpec, RiskConfig]) -> FitOutcome:
    """Fit one estimation window; failures are returned, not raised, so one bad window
    does not abort the others in a worker pool"""
    position, window, spec, config = args
    try:
        return position, GARCHEstimator(config=config).fit(window, spec), None
    except RiskModelError as e:
        return position, None, f"{type(e).__name__}: {e}"


class RollingBacktestEngine:
    """Moving-window refit/forecast loop"""

    def __init__(self, spec: ModelSpec = None,
                 window_size: int = None,
                 refit_interval: int = None,
                 alpha: float = None,
                 max_workers: int = None,
                 show_progress: bool = False,
                 config: RiskConfig = None):
        """
        Initialize engine

        Args:
            spec: Univariate model configuration
            window_size: Length of the moving estimation window
            refit_interval: Steps between parameter re-estimations
            alpha: Tail probability of the VaR/ES forecasts
            max_workers: Worker processes for the refit fits (None or 1 runs in process)
            show_progress: Display a tqdm progress bar
            config: Source of defaults
        """
        self.config = config or DEFAULT_CONFIG
        self.spec = spec or ModelSpec()
        self.window_size = window_size if window_size is not None else self.config.window_size
        self.refit_interval = refit_interval if refit_interval is not None else self.config.refit_interval
        self.alpha = alpha if alpha is not None else self.config.alpha
        self.max_workers = max_workers if max_workers is not None else self.config.max_workers
        self.show_progress = show_progress
        self.estimator = GARCHEstimator(config=self.config)
        self.logger = logging.getLogger('backtest.rolling')

        if self.refit_interval < 1:
            raise ValueError(f"refit_interval must be >= 1, got {self.refit_interval}")
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")

    def refit_positions(self, n: int) -> List[int]:
        """Forecast positions at which parameters are re-estimated"""
        return list(range(self.window_size, n, self.refit_interval))

    def run(self, returns: Union[pd.Series, np.ndarray]) -> RollingBacktestResult:
        """
        Produce one-step VaR/ES for every date after the first window.

        Args:
            returns: Full return series

        Returns:
            RollingBacktestResult with n - window_size records

        Raises:
            WindowTooLargeError: window_size outside [1, n - 1]
        """
        if not isinstance(returns, pd.Series):
            returns = pd.Series(np.asarray(returns, dtype=float))
        if returns.isna().any():
            raise ValueError("Input returns contain missing values")

        n = len(returns)
        if not 0 < self.window_size < n:
            raise WindowTooLargeError(self.window_size, max(n - 1, 0))

        refits = self._run_refits(returns, self.refit_positions(n))
        result = RollingBacktestResult(
            spec=self.spec,
            window_size=self.window_size,
            refit_interval=self.refit_interval,
            alpha=self.alpha
        )

        self.logger.info(
            f"Backtesting {self.spec.label}: {n - self.window_size} forecasts, "
            f"window={self.window_size}, {len(refits)} refits"
        )

        current: Optional[FittedVolatilityModel] = None
        monitor = ProgressMonitor(
            total=n - self.window_size,
            desc="Rolling backtest",
            logger=self.logger,
            disable=not self.show_progress
        )
        with monitor:
            for t in range(self.window_size, n):
                timestamp = returns.index[t]
                realized = float(returns.iloc[t])
                refit = t in refits

                if refit:
                    fitted, error = refits[t]
                    if fitted is None:
                        self.logger.warning(f"Refit at {timestamp} failed: {error}")
                        result.failures.append((timestamp, error))
                        result.records.append(BacktestRecord(timestamp, np.nan, np.nan, True, realized))
                        monitor.update(1)
                        continue
                    current = fitted
                    model = fitted
                elif current is None:
                    result.records.append(BacktestRecord(timestamp, np.nan, np.nan, False, realized))
                    monitor.update(1)
                    continue
                else:
                    model = self.estimator.filter(current, returns.iloc[t - self.window_size:t])

                var, es = self._forecast(model, timestamp, result)
                result.records.append(BacktestRecord(timestamp, var, es, refit, realized))
                monitor.update(1)

        missing = sum(1 for record in result.records if record.missing)
        if missing:
            self.logger.warning(f"{missing} of {len(result)} forecasts are missing")
        return result

    def _run_refits(self, returns: pd.Series,
                    positions: List[int]) -> Dict[int, Tuple[Optional[FittedVolatilityModel], Optional[str]]]:
        """Fit every refit window; each window depends only on past returns, so they run independently"""
        jobs = [
            (t, returns.iloc[t - self.window_size:t], self.spec, self.config)
            for t in positions
        ]

        if self.max_workers and self.max_workers > 1 and len(jobs) > 1:
            self.logger.info(f"Running {len(jobs)} refits with {self.max_workers} workers")
            with ProcessPoolExecutor(max_workers=self.max_workers) as executor:
                outcomes = list(executor.map(_fit_window, jobs))
        else:
            outcomes = [_fit_window(job) for job in jobs]

        return {position: (fitted, error) for position, fitted, error in outcomes}

    def _forecast(self, model: FittedVolatilityModel, timestamp,
                  result: RollingBacktestResult) -> Tuple[float, float]:
        try:
            return forecast_tail_risk(model, self.alpha, horizon=1)
        except (RiskModelError, ValueError) as e:
            self.logger.warning(f"Forecast at {timestamp} failed: {str(e)}")
            result.failures.append((timestamp, f"{type(e).__name__}: {e}"))
            return np.nan, np.nan


def run_rolling_backtest(returns: Union[pd.Series, np.ndarray], spec: ModelSpec = None,
                         window_size: int = None, refit_interval: int = None,
                         alpha: float = 0.05, max_workers: int = None,
                         show_progress: bool = False) -> RollingBacktestResult:
    """Entry point: walk-forward VaR/ES backtest."""
    engine = RollingBacktestEngine(
        spec=spec,
        window_size=window_size,
        refit_interval=refit_interval,
        alpha=alpha,
        max_workers=max_workers,
        show_progress=show_progress
    )
    return engine.run(returns)
