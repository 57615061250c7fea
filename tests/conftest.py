import sys
import os

# Add project root to Python path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.append(project_root)

import pytest
import numpy as np
import pandas as pd


def simulate_garch(n, omega=1e-6, alpha=0.08, beta=0.90, nu=8.0, mu=0.0, seed=42):
    """Simulate a GARCH(1,1) path with unit-variance Student-t shocks"""
    rng = np.random.default_rng(seed)
    shocks = rng.standard_t(nu, size=n) * np.sqrt((nu - 2.0) / nu)

    sigma2 = np.empty(n)
    eps = np.empty(n)
    sigma2[0] = omega / (1.0 - alpha - beta)
    eps[0] = np.sqrt(sigma2[0]) * shocks[0]
    for t in range(1, n):
        sigma2[t] = omega + alpha * eps[t - 1] ** 2 + beta * sigma2[t - 1]
        eps[t] = np.sqrt(sigma2[t]) * shocks[t]

    index = pd.bdate_range('2010-01-04', periods=n)
    return pd.Series(mu + eps, index=index, name='SIM')


def prices_from_returns(returns, start_price=100.0):
    """Price path whose log returns are exactly `returns`"""
    log_prices = np.log(start_price) + np.concatenate([[0.0], np.cumsum(returns.to_numpy())])
    index = returns.index.insert(0, returns.index[0] - pd.offsets.BDay(1))
    return pd.Series(np.exp(log_prices), index=index, name=returns.name)


@pytest.fixture(scope='session')
def garch_returns():
    """3000 returns from GARCH(1,1): omega=1e-6, alpha=0.08, beta=0.90, nu=8"""
    return simulate_garch(3000)


@pytest.fixture(scope='session')
def short_returns():
    """500 returns from the same process"""
    return simulate_garch(500, seed=7)


@pytest.fixture(scope='session')
def fitted_garch(garch_returns):
    from garch.estimator import fit_volatility
    return fit_volatility(garch_returns)


@pytest.fixture
def price_frame():
    """Wide price frame for three assets with correlated GARCH returns"""
    rng = np.random.default_rng(11)
    n = 800
    corr = np.array([[1.0, 0.6, 0.3], [0.6, 1.0, 0.4], [0.3, 0.4, 1.0]])
    shocks = rng.standard_normal((n, 3)) @ np.linalg.cholesky(corr).T

    omega, alpha, beta = 2e-6, 0.07, 0.90
    returns = np.empty((n, 3))
    sigma2 = np.full(3, omega / (1 - alpha - beta))
    for t in range(n):
        returns[t] = np.sqrt(sigma2) * shocks[t]
        sigma2 = omega + alpha * returns[t] ** 2 + beta * sigma2

    index = pd.bdate_range('2015-01-01', periods=n + 1)
    log_prices = np.vstack([np.zeros(3), np.cumsum(returns, axis=0)]) + np.log(100.0)
    return pd.DataFrame(np.exp(log_prices), index=index, columns=['AAA', 'BBB', 'CCC'])
