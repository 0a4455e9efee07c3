from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Period = Literal["1D", "1W", "1M", "1Y"]
Trend = Literal["up", "down", "neutral"]

PERIODS: tuple[str, ...] = ("1D", "1W", "1M", "1Y")


@dataclass(frozen=True, slots=True)
class ToolInvocationRequest:
    """A tool call requested by the model (stable structure across providers)."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolInvocationResult:
    id: str
    name: str
    ok: bool
    content: dict[str, Any]
    error: dict[str, Any] | None = None

    @property
    def text(self) -> str:
        return str(self.content.get("text", ""))


@dataclass(frozen=True, slots=True)
class Citation:
    title: str
    uri: str


@dataclass(frozen=True, slots=True)
class StreamFragment:
    """One incremental unit of a streamed model response."""

    text: str | None = None
    tool_requests: tuple[ToolInvocationRequest, ...] = ()
    citations: tuple[Citation, ...] = ()


@dataclass(frozen=True, slots=True)
class ChartPoint:
    label: str
    price: float
    volume: int


@dataclass(frozen=True, slots=True)
class ChartSeries:
    symbol: str
    points: tuple[ChartPoint, ...]
    period: Period
    trend: Trend

    @property
    def latest_price(self) -> float:
        return self.points[-1].price

    @property
    def render_key(self) -> str:
        """Stable identity for renderers (e.g. a gradient id) keyed by symbol."""

        return f"chart-{self.symbol}"


@dataclass(frozen=True, slots=True)
class TurnResult:
    full_text: str
    sources: tuple[Citation, ...] = ()
    round_trips: int = 0
    truncated: bool = False
