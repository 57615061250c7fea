"""
Data management package for the risk pipeline.
Handles price loading and validation.
"""

from .data_loader import CsvPriceSource, FramePriceSource, PriceSource, load_price_frame
from .data_validator import DataValidator

__all__ = ['CsvPriceSource', 'FramePriceSource', 'PriceSource', 'load_price_frame', 'DataValidator']
