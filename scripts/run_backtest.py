from __future__ import annotations

import argparse
import json
from dataclasses import replace
from datetime import date
from pathlib import Path

from backtester.config import load_engine_config, load_strategy, strategy_hash
from backtester.market_data import CachedBarProvider, CsvBarProvider
from backtester.monitoring import AuditLog, setup_logging
from backtester.runtime import BacktestService, RunStatus, RunStore


def _run_report(store: RunStore, run_id: str) -> dict:
    run = store.get_run(run_id)
    if run is None:
        return {"run_id": run_id, "status": "UNKNOWN"}
    return {
        "run_id": run.id,
        "status": run.status.value,
        "strategy_id": run.strategy_id,
        "symbol": run.symbol,
        "start_date": run.start_date,
        "end_date": run.end_date,
        "timeframe": run.timeframe,
        "error_message": run.error_message,
        "summary": run.summary,
        "monthly_returns": run.monthly_returns,
        "trades": len(store.list_trades(run.id)),
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one strategy backtest and print the stored summary.")
    parser.add_argument("--config", required=True)
    parser.add_argument("--strategy", required=True)
    parser.add_argument("--symbol", required=True)
    parser.add_argument("--start", required=True, type=date.fromisoformat)
    parser.add_argument("--end", required=True, type=date.fromisoformat)
    parser.add_argument("--timeframe", default="1day")
    parser.add_argument("--output")
    args = parser.parse_args()

    config = load_engine_config(args.config)
    setup_logging(config.log_level)

    store = RunStore(config.database_path)
    provider = CachedBarProvider(
        CsvBarProvider(config.data_dir),
        ttl_seconds=config.cache.ttl_seconds,
        max_entries=config.cache.max_entries,
    )
    service = BacktestService(
        store,
        provider,
        audit_log=AuditLog(config.audit_log_path),
        max_workers=config.max_workers,
    )
    service.recover_abandoned_runs()

    strategy = load_strategy(args.strategy)
    if strategy.id is None:
        strategy = replace(strategy, id=strategy_hash(strategy)[:16])
    strategy_id = store.save_strategy(strategy)

    run_id = service.submit_backtest(strategy_id, args.symbol, args.start, args.end, args.timeframe)
    run = service.wait(run_id)
    service.shutdown()
    exit_code = 0 if run is not None and run.status == RunStatus.COMPLETED else 1

    report = _run_report(store, run_id)
    store.close()

    text = json.dumps(report, indent=2, default=str)
    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(text, encoding="utf-8")
        print(f"Wrote {output_path}")
    else:
        print(text)
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
