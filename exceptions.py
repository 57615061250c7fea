"""Error taxonomy shared by the volatility, correlation, backtest and risk modules."""

from typing import Optional


class RiskModelError(Exception):
    """Base class for recoverable errors raised by the risk core"""


class InsufficientDataError(RiskModelError):
    """Too few aligned observations to build or use a return series"""


class InsufficientAssetsError(RiskModelError):
    """Correlation model needs at least two identically aligned assets"""


class ConvergenceError(RiskModelError):
    """
    Optimizer did not converge or produced an unusable estimate.

    The partially estimated model, when one could be built, is attached as
    ``partial`` so callers can still inspect it.
    """

    def __init__(self, message: str, partial: Optional[object] = None):
        super().__init__(message)
        self.partial = partial


class WindowTooLargeError(RiskModelError):
    """Backtest estimation window does not leave any forecast point"""

    def __init__(self, window_size: int, max_window: int):
        super().__init__(
            f"window_size={window_size} is not allowed; "
            f"it must be between 1 and {max_window}"
        )
        self.window_size = window_size
        self.max_window = max_window

    def __reduce__(self):
        return (type(self), (self.window_size, self.max_window))


class DegenerateDistributionError(RiskModelError):
    """Student-t shape too small for the requested moment"""


class ZeroVarianceError(RiskModelError):
    """Return series has no dispersion"""


class DataFetchError(RiskModelError):
    """Market data retrieval failed or returned nothing usable"""
