import logging
from typing import Dict, Sequence, Union

import numpy as np
import pandas as pd
from statsmodels.stats.diagnostic import acorr_ljungbox

from models import FittedVolatilityModel

logger = logging.getLogger(__name__)


def residual_diagnostics(model: FittedVolatilityModel,
                         lags: Union[int, Sequence[int]] = 10) -> pd.DataFrame:
    """
    Ljung-Box tests on the standardized residuals of a fitted model.

    A well specified mean leaves no autocorrelation in e_t, and a well
    specified variance leaves none in e_t^2.

    Args:
        model: Fitted volatility model
        lags: Maximum lag, or explicit list of lags to test

    Returns:
        DataFrame indexed by (series, lag) with lb_stat and lb_pvalue columns
    """
    z = model.standardized_residuals.replace([np.inf, -np.inf], np.nan).dropna()
    if isinstance(lags, (int, np.integer)):
        if lags < 1:
            raise ValueError(f"lags must be >= 1, got {lags}")
        if lags >= len(z):
            raise ValueError(f"lags={lags} requires more than {len(z)} residuals")
    else:
        lags = list(lags)

    tables: Dict[str, pd.DataFrame] = {
        'standardized': acorr_ljungbox(z.to_numpy(), lags=lags, return_df=True),
        'squared': acorr_ljungbox(z.to_numpy() ** 2, lags=lags, return_df=True),
    }
    result = pd.concat(tables, names=['series', 'lag'])

    logger.debug(
        f"Ljung-Box on {len(z)} residuals: min p-value "
        f"{result['lb_pvalue'].min():.4f}"
    )
    return result
