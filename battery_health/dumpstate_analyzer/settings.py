"""Configuration lookups: explicit value, then environment, then default."""
from __future__ import annotations

import logging
import os
from pathlib import Path

from .reconcile import is_plausible_capacity

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_PATH = Path("~/.battery_health/history.json")
DEFAULT_HISTORY_LIMIT = 100

HISTORY_PATH_ENV = "BATTERY_HISTORY_PATH"
HISTORY_LIMIT_ENV = "BATTERY_HISTORY_LIMIT"
DESIGN_CAPACITY_ENV = "BATTERY_DESIGN_CAPACITY"


def resolve_history_path(value: str | Path | None) -> Path:
    if value:
        return Path(value).expanduser().resolve()
    env_value = os.environ.get(HISTORY_PATH_ENV)
    if env_value:
        return Path(env_value).expanduser().resolve()
    return DEFAULT_HISTORY_PATH.expanduser()


def resolve_history_limit(value: int | None) -> int:
    if value is not None:
        return max(value, 1)
    env_value = os.environ.get(HISTORY_LIMIT_ENV)
    if env_value:
        try:
            return max(int(env_value), 1)
        except ValueError:
            logger.debug("Invalid %s value: %s", HISTORY_LIMIT_ENV, env_value)
    return DEFAULT_HISTORY_LIMIT


def resolve_design_capacity(value: int | None) -> int | None:
    """Configured design capacity in mAh, or ``None`` when unset.

    An explicit ``value`` outside the plausible range raises ``ValueError``;
    a bad environment value is ignored.
    """
    if value is not None:
        if not is_plausible_capacity(value):
            raise ValueError(f"Design capacity out of range: {value} mAh")
        return value
    env_value = os.environ.get(DESIGN_CAPACITY_ENV)
    if not env_value:
        return None
    try:
        env_capacity = int(env_value)
    except ValueError:
        logger.debug("Invalid %s value: %s", DESIGN_CAPACITY_ENV, env_value)
        return None
    if not is_plausible_capacity(env_capacity):
        logger.warning("Ignoring implausible %s: %d mAh", DESIGN_CAPACITY_ENV, env_capacity)
        return None
    return env_capacity
