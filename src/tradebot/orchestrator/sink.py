from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from tradebot.core.types import ChartSeries

TextCallback = Callable[[str], None]
ChartCallback = Callable[[ChartSeries], None]


@dataclass(frozen=True, slots=True)
class IncrementalSink:
    """Caller-supplied progress callbacks.

    Both run synchronously on the event-loop thread while the turn is in
    flight, so they should be fast. Deliveries are notifications: a turn that
    later fails does not take them back.
    """

    on_text: TextCallback | None = None
    on_chart: ChartCallback | None = None

    def text(self, fragment: str) -> None:
        if self.on_text is not None:
            self.on_text(fragment)

    def chart(self, series: ChartSeries) -> None:
        if self.on_chart is not None:
            self.on_chart(series)
