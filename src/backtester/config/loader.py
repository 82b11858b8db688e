"""Load engine settings and strategy definitions from YAML."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Optional

import yaml

from backtester.config.models import CacheConfig, EngineConfig
from backtester.strategy.indicators import Indicator
from backtester.strategy.models import Condition, SizingMethod, SizingPolicy, StrategyDefinition


def load_engine_config(path: str | Path) -> EngineConfig:
    data = _load_yaml(Path(path))
    cache = data.get("cache", {}) or {}
    if not isinstance(cache, dict):
        raise ValueError("cache must be a mapping")
    max_workers = int(data.get("max_workers", 4))
    if max_workers < 1:
        raise ValueError("max_workers must be at least 1")
    return EngineConfig(
        database_path=str(data.get("database_path", "runtime/backtests.sqlite3")),
        data_dir=str(data.get("data_dir", "data")),
        audit_log_path=str(data.get("audit_log_path", "runtime/audit.log")),
        cache=CacheConfig(
            ttl_seconds=float(cache.get("ttl_seconds", 300.0)),
            max_entries=int(cache.get("max_entries", 32)),
        ),
        max_workers=max_workers,
        log_level=str(data.get("log_level", "INFO")).upper(),
    )


def load_strategy(path: str | Path) -> StrategyDefinition:
    return parse_strategy(_load_yaml(Path(path)))


def parse_strategy(data: dict[str, Any], strategy_id: Optional[str] = None) -> StrategyDefinition:
    def parse_sizing(value: Any) -> SizingMethod:
        try:
            return SizingMethod(str(value).upper())
        except ValueError as exc:
            raise ValueError(f"Invalid position_sizing: {value}") from exc

    def optional_float(value: Any) -> Optional[float]:
        if value is None:
            return None
        return float(value)

    return StrategyDefinition(
        id=strategy_id or data.get("id"),
        name=str(_require(data, "name")),
        description=data.get("description"),
        entry_conditions=_parse_conditions(_require(data, "entry_rules"), "entry_rules"),
        exit_conditions=_parse_conditions(data.get("exit_rules", []) or [], "exit_rules"),
        sizing=SizingPolicy(
            method=parse_sizing(data.get("position_sizing", "PERCENT_CAPITAL")),
            value=float(data.get("position_size_value", 10.0)),
        ),
        stop_loss_pct=optional_float(data.get("stop_loss_percent")),
        take_profit_pct=optional_float(data.get("take_profit_percent")),
        max_positions=int(data.get("max_positions", 1)),
        commission_pct=float(data.get("commission_percent", 0.0)),
        slippage_pct=float(data.get("slippage_percent", 0.0)),
        initial_capital=float(data.get("initial_capital", 10_000.0)),
    )


def strategy_to_dict(strategy: StrategyDefinition) -> dict[str, Any]:
    def condition_payload(condition: Condition) -> dict[str, Any]:
        comparand = condition.comparand
        return {
            "indicator": condition.indicator.value,
            "operator": condition.operator.value,
            "value": comparand.value if isinstance(comparand, Indicator) else comparand,
        }

    return {
        "id": strategy.id,
        "name": strategy.name,
        "description": strategy.description,
        "entry_rules": [condition_payload(c) for c in strategy.entry_conditions],
        "exit_rules": [condition_payload(c) for c in strategy.exit_conditions],
        "position_sizing": strategy.sizing.method.value,
        "position_size_value": strategy.sizing.value,
        "stop_loss_percent": strategy.stop_loss_pct,
        "take_profit_percent": strategy.take_profit_pct,
        "max_positions": strategy.max_positions,
        "commission_percent": strategy.commission_pct,
        "slippage_percent": strategy.slippage_pct,
        "initial_capital": strategy.initial_capital,
    }


def strategy_hash(strategy: StrategyDefinition) -> str:
    payload = strategy_to_dict(strategy)
    payload.pop("id", None)
    content = json.dumps(payload, sort_keys=True).encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def _parse_conditions(items: Any, key: str) -> tuple[Condition, ...]:
    if not isinstance(items, list):
        raise ValueError(f"{key} must be a list")
    conditions = []
    for item in items:
        if not isinstance(item, dict):
            raise ValueError(f"Each entry in {key} must be a mapping")
        conditions.append(
            Condition.build(
                indicator=str(_require(item, "indicator")),
                operator=str(_require(item, "operator")),
                comparand=_require(item, "value"),
            )
        )
    return tuple(conditions)


def _load_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Config must be a mapping")
    return data


def _require(data: dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ValueError(f"Missing required config key: {key}")
    return data[key]
