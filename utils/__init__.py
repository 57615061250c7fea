"""Utility classes for the risk pipeline"""

from .cache import AnalysisCache
from .progress import ProgressMonitor

__all__ = ['AnalysisCache', 'ProgressMonitor']
