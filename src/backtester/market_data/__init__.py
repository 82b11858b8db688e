"""Historical market data inputs."""

from backtester.market_data.models import Bar, BarSeries
from backtester.market_data.providers import BarProvider, CachedBarProvider, CsvBarProvider

__all__ = [
    "Bar",
    "BarProvider",
    "BarSeries",
    "CachedBarProvider",
    "CsvBarProvider",
]
