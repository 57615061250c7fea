"""
Runtime configuration for the risk pipeline.
Defaults can be overridden with GARCH_RISK_* environment variables or a .env file.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

ENV_PREFIX = 'GARCH_RISK_'


@dataclass(frozen=True)
class RiskConfig:
    """Container for pipeline defaults"""
    alpha: float = 0.05
    trading_days: int = 252
    return_scale: float = 100.0  # returns are fitted in percent
    max_iterations: int = 1000
    refit_interval: int = 21  # monthly refits
    window_size: int = 500
    risk_free_rate: float = 0.0
    max_workers: int = 1
    log_level: str = 'INFO'

    def __post_init__(self):
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")
        if self.refit_interval < 1:
            raise ValueError(f"refit_interval must be >= 1, got {self.refit_interval}")
        if self.return_scale <= 0:
            raise ValueError(f"return_scale must be positive, got {self.return_scale}")


def load_config(env_file: Optional[Union[str, Path]] = None) -> RiskConfig:
    """
    Build a RiskConfig from the environment.

    Args:
        env_file: Optional .env file loaded before reading the environment.
                  Variables already set in the process take precedence.

    Returns:
        RiskConfig with overrides applied
    """
    if env_file is not None:
        load_dotenv(env_file, override=False)

    overrides = {}
    for field in fields(RiskConfig):
        raw = os.getenv(f"{ENV_PREFIX}{field.name.upper()}")
        if raw is None or raw == '':
            continue
        try:
            overrides[field.name] = field.type(raw) if callable(field.type) else raw
        except ValueError:
            raise ValueError(f"Invalid value for {ENV_PREFIX}{field.name.upper()}: {raw!r}")

    return RiskConfig(**overrides)


DEFAULT_CONFIG = RiskConfig()
