from __future__ import annotations

import argparse
import csv
import math
import random
from datetime import date, timedelta
from pathlib import Path

from backtester.market_data import CsvBarProvider


def main() -> None:
    parser = argparse.ArgumentParser(description="Write a synthetic daily bar file for local runs.")
    parser.add_argument("--data-dir", required=True)
    parser.add_argument("--symbol", default="AAPL")
    parser.add_argument("--start", default="2022-01-03", type=date.fromisoformat)
    parser.add_argument("--days", default=750, type=int)
    parser.add_argument("--seed", default=7, type=int)
    args = parser.parse_args()

    provider = CsvBarProvider(args.data_dir)
    path = provider.path_for(args.symbol, "1day")
    path.parent.mkdir(parents=True, exist_ok=True)

    rng = random.Random(args.seed)
    price = 100.0
    day = args.start
    written = 0
    with Path(path).open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(["datetime", "open", "high", "low", "close", "volume"])
        while written < args.days:
            if day.weekday() < 5:
                open_price = price
                drift = 0.6 * math.sin(written / 15.0) + rng.gauss(0.0, 1.2)
                close = max(1.0, open_price + drift)
                high = max(open_price, close) + abs(rng.gauss(0.0, 0.5))
                low = max(0.5, min(open_price, close) - abs(rng.gauss(0.0, 0.5)))
                volume = rng.randint(800_000, 1_500_000)
                writer.writerow(
                    [day.isoformat(), f"{open_price:.4f}", f"{high:.4f}", f"{low:.4f}", f"{close:.4f}", volume]
                )
                price = close
                written += 1
            day += timedelta(days=1)

    print(f"Wrote {written} bars to {path}")


if __name__ == "__main__":
    main()
