#!/usr/bin/env python
"""
Risk calculation pipeline.
Coordinates return construction, volatility and correlation fitting,
rolling backtests and risk summaries behind a memoizing request boundary.
"""
import sys
import argparse
from pathlib import Path
import logging
from datetime import datetime
from concurrent.futures import ProcessPoolExecutor, TimeoutError as FutureTimeoutError
import pandas as pd
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
import time
import psutil
import traceback

# Add project root to path
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.append(str(project_root))

from config import RiskConfig, load_config
from data_manager.data_loader import CsvPriceSource, PriceSource
from exceptions import RiskModelError
from garch.data_prep import build_returns
from garch.estimator import fit_volatility
from garch.forecaster import forecast_volatility
from correlation.dcc import fit_correlation, latest_correlation
from backtest.rolling import run_rolling_backtest
from risk.metrics import compute_risk_summary
from models import (
    FittedCorrelationModel,
    FittedVolatilityModel,
    ModelSpec,
    RiskSummary,
    RollingBacktestResult,
)
from utils.cache import AnalysisCache

__all__ = [
    'build_returns', 'fit_volatility', 'forecast_volatility', 'fit_correlation',
    'run_rolling_backtest', 'compute_risk_summary',
    'RiskAnalysis', 'PerformanceMonitor', 'run_with_timeout', 'setup_logging', 'main',
]

EXIT_OK = 0
EXIT_MODEL_ERROR = 2


class PerformanceMonitor:
    """Tracks duration and memory of pipeline stages"""
    def __init__(self):
        self.start_time = time.time()
        self.last_checkpoint = self.start_time
        self.checkpoints = {}

    def checkpoint(self, name: str):
        """Record timing for a checkpoint"""
        now = time.time()
        duration = now - self.last_checkpoint
        self.checkpoints[name] = {
            'duration': duration,
            'memory': psutil.Process().memory_info().rss / 1024 / 1024  # MB
        }
        self.last_checkpoint = now

    def report(self) -> str:
        """Generate checkpoint report"""
        total_time = time.time() - self.start_time
        report = ["Performance Report:", "-----------------"]

        for name, stats in self.checkpoints.items():
            report.append(f"{name}:")
            report.append(f"  Duration: {stats['duration']:.2f} seconds")
            report.append(f"  Memory: {stats['memory']:.2f} MB")

        report.append("-----------------")
        report.append(f"Total Time: {total_time:.2f} seconds")
        return "\n".join(report)


def setup_logging(output_dir: Optional[Path] = None, level: str = 'INFO') -> logging.Logger:
    """
    Configure logging with console and optional file handlers

    Parameters:
    -----------
    output_dir : Path, optional
        Directory for the timestamped log file
    level : str
        Log level name

    Returns:
    --------
    logging.Logger
        Pipeline logger
    """
    root = logging.getLogger()
    root.setLevel(level)

    # Replace handlers installed by an earlier call
    for handler in list(root.handlers):
        if getattr(handler, 'risk_pipeline', False):
            root.removeHandler(handler)
            handler.close()

    handlers: List[logging.Handler] = []

    if output_dir is not None:
        log_dir = Path(output_dir) / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        file_handler = logging.FileHandler(log_dir / f"risk_calculation_{timestamp}.log")
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        handlers.append(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter('%(message)s'))
    handlers.append(console_handler)

    for handler in handlers:
        handler.setLevel(level)
        handler.risk_pipeline = True
        root.addHandler(handler)

    return logging.getLogger('risk_calculator')


def run_with_timeout(fn: Callable, *args, timeout: Optional[float] = None, **kwargs) -> Any:
    """
    Run a call in a worker process and wait at most `timeout` seconds.

    The callable and its arguments must be picklable. A call that times out is
    abandoned, not interrupted; its worker finishes in the background.

    Raises:
        TimeoutError: the call did not complete in time
    """
    executor = ProcessPoolExecutor(max_workers=1)
    future = executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        raise TimeoutError(f"{getattr(fn, '__name__', fn)} did not finish within {timeout} seconds")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def _date_key(value) -> Optional[pd.Timestamp]:
    return pd.Timestamp(value) if value is not None else None


class RiskAnalysis:
    """
    Request boundary: fetches prices and runs the risk core, memoizing
    results keyed by (tickers, start, end, spec, ...).
    """

    def __init__(self, source: PriceSource, config: RiskConfig = None,
                 cache: Optional[AnalysisCache] = None):
        self.source = source
        self.config = config or RiskConfig()
        self.cache = cache if cache is not None else AnalysisCache()
        self.logger = logging.getLogger('risk_calculator')

    def _memoized(self, key: tuple, compute: Callable[[], Any]) -> Any:
        cached = self.cache.get(key)
        if cached is not None:
            self.logger.debug(f"Cache hit for {key[0]}")
            return cached
        value = compute()
        self.cache.set(key, value)
        return value

    def returns(self, tickers: Iterable[str], start, end) -> Dict[str, pd.Series]:
        """Aligned log returns per ticker"""
        tickers = tuple(sorted(set(tickers)))
        key = AnalysisCache.make_key('returns', tickers, _date_key(start), _date_key(end))

        def compute():
            prices = self.source.fetch_prices(list(tickers), start, end)
            return build_returns(prices)

        return self._memoized(key, compute)

    def volatility(self, ticker: str, start, end, spec: ModelSpec = None) -> FittedVolatilityModel:
        spec = spec or ModelSpec()
        key = AnalysisCache.make_key('volatility', (ticker,), _date_key(start), _date_key(end), spec)
        return self._memoized(
            key,
            lambda: fit_volatility(self.returns([ticker], start, end)[ticker], spec, config=self.config)
        )

    def risk_summary(self, ticker: str, start, end, spec: ModelSpec = None,
                     alpha: float = None, horizon: int = 1) -> RiskSummary:
        """Fit a model for one ticker and summarize VaR, ES and Sharpe"""
        spec = spec or ModelSpec()
        alpha = alpha if alpha is not None else self.config.alpha
        key = AnalysisCache.make_key(
            'summary', (ticker,), _date_key(start), _date_key(end), spec, alpha, horizon,
            self.config.risk_free_rate
        )
        return self._memoized(
            key,
            lambda: compute_risk_summary(
                self.volatility(ticker, start, end, spec),
                alpha=alpha,
                horizon=horizon,
                risk_free_rate=self.config.risk_free_rate,
                trading_days=self.config.trading_days
            )
        )

    def correlation(self, tickers: Sequence[str], start, end,
                    spec: ModelSpec = None) -> FittedCorrelationModel:
        spec = spec or ModelSpec()
        tickers = tuple(sorted(set(tickers)))
        key = AnalysisCache.make_key('correlation', tickers, _date_key(start), _date_key(end), spec)
        return self._memoized(
            key,
            lambda: fit_correlation(
                self.returns(tickers, start, end), spec, max_workers=self.config.max_workers
            )
        )

    def backtest(self, ticker: str, start, end, spec: ModelSpec = None,
                 window_size: int = None, refit_interval: int = None,
                 alpha: float = None) -> RollingBacktestResult:
        spec = spec or ModelSpec()
        window_size = window_size or self.config.window_size
        refit_interval = refit_interval or self.config.refit_interval
        alpha = alpha if alpha is not None else self.config.alpha
        key = AnalysisCache.make_key(
            'backtest', (ticker,), _date_key(start), _date_key(end), spec,
            window_size, refit_interval, alpha
        )
        return self._memoized(
            key,
            lambda: run_rolling_backtest(
                self.returns([ticker], start, end)[ticker],
                spec,
                window_size=window_size,
                refit_interval=refit_interval,
                alpha=alpha,
                max_workers=self.config.max_workers
            )
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="garch-risk",
        description="GARCH volatility, DCC correlation and VaR/ES risk forecasts from a price CSV.",
    )
    parser.add_argument("prices", type=str,
                        help="Wide price CSV with a 'date' column and one column per ticker")
    parser.add_argument("--tickers", nargs="+", default=None,
                        help="Tickers to analyse (default: every column)")
    parser.add_argument("--start", type=str, default=None, help="First date (default: first row)")
    parser.add_argument("--end", type=str, default=None, help="Last date (default: last row)")
    parser.add_argument("--family", type=str, default="garch",
                        help="Variance family: garch, gjrgarch or egarch (default: garch)")
    parser.add_argument("--p", type=int, default=1, help="ARCH lags (default: 1)")
    parser.add_argument("--q", type=int, default=1, help="GARCH lags (default: 1)")
    parser.add_argument("--ar", type=int, default=0, help="AR lags in the mean (default: 0)")
    parser.add_argument("--distribution", type=str, default="studentst",
                        help="Innovation distribution: studentst or normal (default: studentst)")
    parser.add_argument("--alpha", type=float, default=None, help="VaR tail probability")
    parser.add_argument("--horizon", type=int, default=1, help="Risk horizon in days (default: 1)")
    parser.add_argument("--backtest", action="store_true", help="Run the rolling backtest")
    parser.add_argument("--window-size", type=int, default=None, help="Backtest estimation window")
    parser.add_argument("--refit-interval", type=int, default=None, help="Steps between refits")
    parser.add_argument("--correlation", action="store_true",
                        help="Fit a DCC model across the tickers")
    parser.add_argument("--env-file", type=str, default=None, help="Optional .env file with GARCH_RISK_* settings")
    parser.add_argument("--output-dir", "-o", type=str, default=None, help="Directory for log files")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Abandon the analysis after this many seconds")
    return parser


def run_analysis(args: argparse.Namespace, config: RiskConfig,
                 logger: logging.Logger, monitor: PerformanceMonitor) -> Dict[str, Any]:
    """Run the requested analyses and return their results"""
    source = CsvPriceSource(args.prices)
    tickers = args.tickers or list(source.prices.columns)
    start = args.start or source.prices.index[0]
    end = args.end or source.prices.index[-1]
    spec = ModelSpec(
        family=args.family,
        variance_order=(args.p, args.q),
        mean_order=(args.ar, 0),
        distribution=args.distribution
    )
    analysis = RiskAnalysis(source, config=config)
    monitor.checkpoint("Load prices")

    results: Dict[str, Any] = {'summaries': {}, 'backtests': {}}
    for ticker in tickers:
        summary = analysis.risk_summary(ticker, start, end, spec, alpha=args.alpha, horizon=args.horizon)
        results['summaries'][ticker] = summary
        logger.info(f"{ticker} {spec.label}: {summary.to_dict()}")
    monitor.checkpoint("Risk summaries")

    if args.backtest:
        for ticker in tickers:
            backtest = analysis.backtest(
                ticker, start, end, spec,
                window_size=args.window_size,
                refit_interval=args.refit_interval,
                alpha=args.alpha
            )
            results['backtests'][ticker] = backtest
            coverage = backtest.coverage()
            logger.info(
                f"{ticker} backtest: {len(backtest)} forecasts, {backtest.n_refits} refits, "
                f"Kupiec p={coverage['kupiec']['p_value']:.4f}, "
                f"Christoffersen p={coverage['christoffersen']['p_value']:.4f}"
            )
        monitor.checkpoint("Backtests")

    if args.correlation:
        model = analysis.correlation(tickers, start, end, spec)
        results['correlation'] = model
        logger.info(
            f"DCC a={model.dcc_alpha:.4f} b={model.dcc_beta:.4f}; latest correlation:\n"
            f"{latest_correlation(model).round(4)}"
        )
        monitor.checkpoint("Correlation")

    return results


def _analysis_worker(args: argparse.Namespace, config: RiskConfig, logger: logging.Logger,
                     monitor: PerformanceMonitor) -> Tuple[Dict[str, Any], PerformanceMonitor]:
    """run_analysis for a worker process; the monitor goes back with the results"""
    results = run_analysis(args, config, logger, monitor)
    return results, monitor


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line entry point"""
    args = build_parser().parse_args(argv)

    config = load_config(args.env_file)
    output_dir = Path(args.output_dir) if args.output_dir else None
    logger = setup_logging(output_dir, config.log_level)
    monitor = PerformanceMonitor()

    try:
        if args.timeout:
            results, worker_monitor = run_with_timeout(
                _analysis_worker, args, config, logger, monitor, timeout=args.timeout
            )
            monitor.checkpoints.update(worker_monitor.checkpoints)
        else:
            results = run_analysis(args, config, logger, monitor)
    except (RiskModelError, TimeoutError) as e:
        logger.debug(f"Traceback: {traceback.format_exc()}")
        print(f"error: {e}", file=sys.stderr)
        return EXIT_MODEL_ERROR
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_MODEL_ERROR

    logger.info(f"Analysed {len(results['summaries'])} tickers")
    logger.info(monitor.report())
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
