"""
Data validation for price series supplied by the market-data collaborator.
"""

import logging
from typing import Dict, List, Mapping, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class DataValidator:
    """Validates price series before return construction."""

    def __init__(self, min_price: float = 0.0, max_price: float = 1e9):
        # Define reasonable bounds for data validation
        self.validation_bounds = {
            'price': {'min': min_price, 'max': max_price}
        }

    def validate_prices(self, prices: pd.Series, name: str = 'price') -> Tuple[bool, List[str]]:
        """
        Validates a single price series.

        Args:
            prices: Series of prices indexed by timestamp
            name: Label used in issue messages

        Returns:
            Tuple of (is_valid, list_of_issues)
        """
        issues = []

        if not isinstance(prices, pd.Series):
            return False, [f"{name}: expected a pandas Series, got {type(prices).__name__}"]

        # Timestamp ordering
        if prices.index.has_duplicates:
            n_dupes = int(prices.index.duplicated().sum())
            issues.append(f"{name}: {n_dupes} duplicate timestamps")
        if not prices.index.is_monotonic_increasing:
            issues.append(f"{name}: timestamps are not strictly increasing")

        # Bounds are only checked on observed values; missing values are dropped later
        observed = prices[np.isfinite(pd.to_numeric(prices, errors='coerce'))]
        issues.extend(self._validate_bounds(
            observed.astype(float),
            self.validation_bounds['price']['min'],
            self.validation_bounds['price']['max'],
            name
        ))

        return len(issues) == 0, issues

    def validate_price_map(self, prices: Mapping[str, pd.Series]) -> Tuple[bool, Dict[str, List[str]]]:
        """Validates every series in an asset -> prices mapping."""
        all_issues = {}
        for asset, series in prices.items():
            is_valid, issues = self.validate_prices(series, name=str(asset))
            if not is_valid:
                all_issues[asset] = issues
                logger.warning(f"Price series for {asset} failed validation: {issues}")
        return len(all_issues) == 0, all_issues

    def _validate_bounds(self, series: pd.Series, min_val: float, max_val: float, name: str) -> List[str]:
        """Validates that values fall strictly above min_val and at or below max_val."""
        issues = []

        # Log prices require strictly positive values
        below_min = series[series <= min_val]
        if not below_min.empty:
            issues.append(
                f"{name}: {len(below_min)} values not above minimum of {min_val} "
                f"(first occurrence at index {below_min.index[0]})"
            )

        above_max = series[series > max_val]
        if not above_max.empty:
            issues.append(
                f"{name}: {len(above_max)} values above maximum of {max_val} "
                f"(first occurrence at index {above_max.index[0]})"
            )

        return issues
