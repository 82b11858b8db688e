"""Engine and strategy configuration."""

from backtester.config.loader import (
    load_engine_config,
    load_strategy,
    parse_strategy,
    strategy_hash,
    strategy_to_dict,
)
from backtester.config.models import CacheConfig, EngineConfig

__all__ = [
    "CacheConfig",
    "EngineConfig",
    "load_engine_config",
    "load_strategy",
    "parse_strategy",
    "strategy_hash",
    "strategy_to_dict",
]
