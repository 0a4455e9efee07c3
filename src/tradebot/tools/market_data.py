"""Synthetic market data.

Stands in for a real market-data API: the shape of a series (point count and
label spacing) is fixed by the period, the values are a random walk. Pass a
seeded `random.Random` and a fixed clock for reproducible output.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import Callable, Sequence

from tradebot.core.types import ChartPoint, ChartSeries, Period, Trend

# Trailing steps per period; the series also includes the current point.
POINTS_PER_PERIOD: dict[str, int] = {"1D": 24, "1W": 7, "1M": 30, "1Y": 12}

VOLATILITY = 0.02


def derive_trend(points: Sequence[ChartPoint]) -> Trend:
    if not points:
        return "neutral"
    start, end = points[0].price, points[-1].price
    if end > start:
        return "up"
    if end < start:
        return "down"
    return "neutral"


def _shift_months(ts: datetime, months: int) -> datetime:
    month_index = ts.year * 12 + (ts.month - 1) - months
    year, month = divmod(month_index, 12)
    # Clamp the day so e.g. Mar 31 minus one month lands on Feb 28/29.
    day = ts.day
    while True:
        try:
            return ts.replace(year=year, month=month + 1, day=day)
        except ValueError:
            day -= 1


def _timestamp(now: datetime, period: str, steps_back: int) -> datetime:
    if period == "1D":
        return now - timedelta(hours=steps_back)
    if period == "1Y":
        return _shift_months(now, steps_back)
    return now - timedelta(days=steps_back)


def _label(ts: datetime, period: str) -> str:
    if period == "1D":
        return ts.strftime("%H:%M")
    return ts.date().isoformat()


class MarketData:
    def __init__(self, *, rng: random.Random | None = None, clock: Callable[[], datetime] | None = None) -> None:
        self._rng = rng or random.Random()
        self._clock = clock or datetime.now

    def chart(self, symbol: str, period: Period) -> ChartSeries:
        if period not in POINTS_PER_PERIOD:
            raise ValueError(f"unsupported period: {period!r}")

        now = self._clock()
        steps = POINTS_PER_PERIOD[period]
        price = self._rng.random() * 100 + 50

        points: list[ChartPoint] = []
        for steps_back in range(steps, -1, -1):
            price += price * (self._rng.random() - 0.5) * VOLATILITY
            points.append(
                ChartPoint(
                    label=_label(_timestamp(now, period, steps_back), period),
                    price=round(price, 2),
                    volume=self._rng.randint(1000, 10999),
                )
            )

        return ChartSeries(
            symbol=symbol.upper(),
            points=tuple(points),
            period=period,
            trend=derive_trend(points),
        )

    def quote(self, symbol: str) -> float:
        _ = symbol
        return round(self._rng.random() * 100 + 50, 2)
