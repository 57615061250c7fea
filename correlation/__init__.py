"""Multivariate correlation models."""

from .dcc import DCCEstimator, fit_correlation, latest_correlation, renormalize_correlation

__all__ = ['DCCEstimator', 'fit_correlation', 'latest_correlation', 'renormalize_correlation']
