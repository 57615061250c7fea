"""
Price loaders implementing the market-data collaborator interface.

The risk core only consumes ``fetch_prices(tickers, start, end)``; these
adapters serve prices from an in-memory frame or a wide CSV file.
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol, Union

import pandas as pd

from exceptions import DataFetchError

logger = logging.getLogger(__name__)

DateLike = Union[str, date, datetime, pd.Timestamp]


class PriceSource(Protocol):
    """Anything able to return asset -> price series for a date range"""

    def fetch_prices(self, tickers: Iterable[str], start: DateLike, end: DateLike) -> Dict[str, pd.Series]:
        ...


class FramePriceSource:
    """Serves prices from a wide DataFrame (one column per ticker, DatetimeIndex)."""

    def __init__(self, prices: pd.DataFrame):
        if not isinstance(prices.index, pd.DatetimeIndex):
            raise ValueError("Price frame must be indexed by a DatetimeIndex")
        self.prices = prices.sort_index()
        self.logger = logging.getLogger('data_manager.loader')

    def fetch_prices(self, tickers: Iterable[str], start: DateLike, end: DateLike) -> Dict[str, pd.Series]:
        """
        Slice the requested tickers and date range.

        Raises:
            DataFetchError: unknown ticker, empty request or empty result
        """
        tickers = sorted(set(tickers))
        if not tickers:
            raise DataFetchError("No tickers requested")

        missing = [t for t in tickers if t not in self.prices.columns]
        if missing:
            raise DataFetchError(f"Unknown tickers: {missing}")

        start_ts, end_ts = pd.Timestamp(start), pd.Timestamp(end)
        if start_ts > end_ts:
            raise DataFetchError(f"Start date {start_ts:%Y-%m-%d} is after end date {end_ts:%Y-%m-%d}")

        window = self.prices.loc[start_ts:end_ts, tickers]
        result = {}
        for ticker in tickers:
            series = window[ticker].dropna()
            if series.empty:
                raise DataFetchError(
                    f"No prices for {ticker} between {start_ts:%Y-%m-%d} and {end_ts:%Y-%m-%d}"
                )
            result[ticker] = series.rename(ticker)

        self.logger.info(
            f"Fetched {len(result)} price series from {start_ts:%Y-%m-%d} to {end_ts:%Y-%m-%d}"
        )
        return result


class CsvPriceSource(FramePriceSource):
    """Serves prices from a wide CSV with a 'date' column and one column per ticker."""

    def __init__(self, path: Union[str, Path], date_column: str = 'date'):
        self.path = Path(path)
        super().__init__(load_price_frame(self.path, date_column=date_column))


def load_price_frame(path: Union[str, Path], date_column: Optional[str] = 'date') -> pd.DataFrame:
    """Read a wide prices CSV into a DataFrame indexed by date."""
    path = Path(path)
    if not path.exists():
        raise DataFetchError(f"Data file not found: {path}")

    df = pd.read_csv(path)
    if date_column not in df.columns:
        raise DataFetchError(f"Prices CSV must contain a '{date_column}' column")

    df[date_column] = pd.to_datetime(df[date_column])
    df = df.set_index(date_column).sort_index()
    logger.info(f"Loaded {len(df)} rows and {len(df.columns)} tickers from {path}")
    return df
