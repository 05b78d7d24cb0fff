"""
Runtime settings for neurotensor.

Settings are read once from the environment when the module is imported
and exposed as the module-level ``SETTINGS`` object:

    >>> from neurotensor.config import SETTINGS
    >>> SETTINGS.matmul_threshold
    1024

Environment variables
---------------------
NEUROTENSOR_MATMUL_THRESHOLD
    Output element count at which matmul switches to the accelerated
    synchronous backend (default 1024).
NEUROTENSOR_TILE_SIZE
    Tile edge of the in-process blocked matmul (default 32).
NEUROTENSOR_POOL_CAP
    Maximum retained buffers per distinct size (default 100).
NEUROTENSOR_POOLING
    ``"0"``/``"false"`` disables buffer pooling for new pools.
NEUROTENSOR_AUTO_ACCELERATE
    ``"0"``/``"false"`` stops matmul from loading the accelerated
    backend on its own.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

_FALSE_VALUES = ("0", "false", "no", "off")


@dataclass
class Settings:
    matmul_threshold: int = 1024
    tile_size: int = 32
    pool_cap: int = 100
    pooling_enabled: bool = True
    auto_accelerate: bool = True


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    value = int(raw)
    if value <= 0:
        raise ValueError(f"{key} must be a positive integer, got {raw!r}")
    return value


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in _FALSE_VALUES


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build a :class:`Settings` object from environment variables.

    Parameters
    ----------
    env : mapping, optional
        Source of variables. Defaults to ``os.environ``.

    Returns
    -------
    Settings
        Settings with every unset variable left at its default.

    Raises
    ------
    ValueError
        If a numeric variable is not a positive integer.
    """
    env = os.environ if env is None else env
    return Settings(
        matmul_threshold=_env_int(env, "NEUROTENSOR_MATMUL_THRESHOLD", 1024),
        tile_size=_env_int(env, "NEUROTENSOR_TILE_SIZE", 32),
        pool_cap=_env_int(env, "NEUROTENSOR_POOL_CAP", 100),
        pooling_enabled=_env_bool(env, "NEUROTENSOR_POOLING", True),
        auto_accelerate=_env_bool(env, "NEUROTENSOR_AUTO_ACCELERATE", True),
    )


SETTINGS = load_settings()
