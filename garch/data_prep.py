"""
Prepare log-return series for volatility estimation.
"""

import logging
from typing import Dict, Mapping, Union

import numpy as np
import pandas as pd

from data_manager.data_validator import DataValidator
from exceptions import InsufficientDataError

logger = logging.getLogger(__name__)

PriceInput = Union[pd.Series, Mapping[str, pd.Series]]
ReturnOutput = Union[pd.Series, Dict[str, pd.Series]]


class GarchDataPrep:
    """Prepares market prices for GARCH estimation."""

    def __init__(self, validator: DataValidator = None):
        self.validator = validator or DataValidator()

    def prepare_returns(self, prices: PriceInput) -> ReturnOutput:
        """
        Convert prices to aligned log returns.

        Args:
            prices: Price series, or mapping asset -> price series

        Returns:
            Log-return series (single input) or mapping asset -> log returns,
            all sharing the same timestamps

        Raises:
            InsufficientDataError: fewer than 2 aligned observations
            ValueError: invalid prices (non-positive, duplicate or unsorted timestamps)
        """
        if isinstance(prices, pd.Series):
            name = prices.name if prices.name is not None else 'asset'
            returns = self.prepare_returns({name: prices})
            return returns[name]

        if not prices:
            raise InsufficientDataError("No price series supplied")

        is_valid, issues = self.validator.validate_price_map(prices)
        if not is_valid:
            raise ValueError(f"Invalid price data: {issues}")

        # Drop missing observations per asset, then inner-join on timestamp
        cleaned = {
            asset: pd.to_numeric(series, errors='coerce').replace([np.inf, -np.inf], np.nan).dropna()
            for asset, series in prices.items()
        }
        aligned = pd.concat(cleaned, axis=1, join='inner').sort_index()

        if len(aligned) < 2:
            raise InsufficientDataError(
                f"Need at least 2 aligned price observations, got {len(aligned)}"
            )

        # First row has no predecessor and is dropped, never filled
        log_returns = np.log(aligned).diff().iloc[1:]
        log_returns = log_returns.dropna()

        if log_returns.empty:
            raise InsufficientDataError("No returns left after alignment")

        logger.info(
            f"Built {log_returns.shape[1]} return series with {len(log_returns)} observations "
            f"from {log_returns.index[0]} to {log_returns.index[-1]}"
        )

        return {asset: log_returns[asset].rename(asset) for asset in prices.keys()}


def build_returns(prices: PriceInput) -> ReturnOutput:
    """Entry point: prices -> aligned log returns."""
    return GarchDataPrep().prepare_returns(prices)
