"""Configuration models for the backtest service."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CacheConfig:
    ttl_seconds: float = 300.0
    max_entries: int = 32


@dataclass(frozen=True)
class EngineConfig:
    database_path: str = "runtime/backtests.sqlite3"
    data_dir: str = "data"
    audit_log_path: str = "runtime/audit.log"
    cache: CacheConfig = CacheConfig()
    max_workers: int = 4
    log_level: str = "INFO"
