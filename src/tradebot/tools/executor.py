from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from tradebot.core.config import ToolsConfig
from tradebot.core.types import ChartSeries, ToolInvocationRequest, ToolInvocationResult
from tradebot.observability import get_logger

from .arguments import decode_arguments
from .declarations import STOCK_CHART, STOCK_PRICE
from .market_data import MarketData
from .registry import ToolRegistry
from .tool_result_codec import make_payload, normalize_error, payload_from_output

ChartCallback = Callable[[ChartSeries], None]


class ToolRejected(RuntimeError):
    """Structured tool rejection.

    Raise from a handler to fail with a normalized error type instead of an
    arbitrary exception.
    """

    def __init__(self, error_type: str, message: str, *, details: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.details = details or {}


@dataclass(frozen=True, slots=True)
class ToolOutput:
    """Handler output: model-facing summary, structured data, optional chart."""

    text: str
    data: dict[str, Any] = field(default_factory=dict)
    chart: ChartSeries | None = None


ToolHandler = Callable[[dict[str, Any]], "ToolOutput | str | dict[str, Any]"]


@dataclass(slots=True)
class RateLimiter:
    """Per-tool token bucket."""

    calls_per_second: float
    burst: float | None = None
    _tokens: float = 0.0
    _last: float = 0.0

    def allow(self) -> bool:
        now = time.monotonic()
        cap = self.burst or self.calls_per_second
        if self._last == 0.0:
            self._last = now
            self._tokens = cap

        self._tokens = min(cap, self._tokens + max(0.0, now - self._last) * self.calls_per_second)
        self._last = now

        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False


class ToolExecutor:
    """Dispatch tool invocations by name; never raises for model mistakes.

    Unknown tools, guardrail refusals, bad arguments and handler exceptions
    all come back as a failed ToolInvocationResult the model can talk about.
    Only the caller's chart callback may raise through `execute`.
    """

    def __init__(
        self,
        *,
        registry: ToolRegistry,
        enabled: bool = True,
        whitelist: Iterable[str] = (),
        rate_limits: dict[str, float] | None = None,
    ) -> None:
        self._registry = registry
        self._enabled = enabled
        self._whitelist = set(whitelist)
        self._handlers: dict[str, ToolHandler] = {}
        self._limiters = {name: RateLimiter(calls_per_second=cps) for name, cps in (rate_limits or {}).items()}
        self._log = get_logger("tradebot.tools")

    @classmethod
    def from_config(cls, cfg: ToolsConfig, *, registry: ToolRegistry) -> "ToolExecutor":
        return cls(registry=registry, enabled=cfg.enabled, whitelist=cfg.whitelist, rate_limits=cfg.rate_limit)

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def register_handler(self, name: str, handler: ToolHandler) -> None:
        if name not in self._registry:
            raise KeyError(f"no declaration registered for tool {name!r}")
        self._handlers[name] = handler

    def execute(self, request: ToolInvocationRequest, *, on_chart: ChartCallback | None = None) -> ToolInvocationResult:
        name = request.name
        meta = {"tool_call_id": request.id, "tool_name": name}

        def fail(error_type: str, text: str, message: str | None = None, **details: str) -> ToolInvocationResult:
            return ToolInvocationResult(
                id=request.id,
                name=name,
                ok=False,
                content=make_payload(text=text, data={}, meta=meta),
                error=normalize_error(error_type=error_type, message=message or text, details=details),
            )

        if not self._enabled:
            return fail("tools_disabled", "Tools are disabled; answer without them.")

        if self._whitelist and name not in self._whitelist:
            return fail("not_allowed", f"Tool '{name}' is not allowed.")

        declaration = self._registry.get(name)
        handler = self._handlers.get(name)
        if declaration is None or handler is None:
            self._log.warning("tool_unavailable", tool_call_id=request.id, tool=name)
            return fail("not_found", f"Tool '{name}' is not available.")

        limiter = self._limiters.get(name)
        if limiter and not limiter.allow():
            return fail("rate_limited", f"Tool '{name}' is rate limited; try again later.")

        args = decode_arguments(declaration, request.arguments)

        try:
            out = handler(args)
        except ToolRejected as e:
            self._log.info("tool_rejected", tool_call_id=request.id, tool=name, error_type=e.error_type)
            return fail(e.error_type, f"Tool '{name}' rejected the request: {e.message}", e.message, **e.details)
        except Exception as e:  # noqa: BLE001
            self._log.exception("tool_error", tool_call_id=request.id, tool=name)
            return fail(type(e).__name__, f"Tool '{name}' failed: {e}", str(e), exc=type(e).__name__)

        if isinstance(out, ToolOutput):
            if out.chart is not None and on_chart is not None:
                # The caller sees the chart before the model sees the result.
                on_chart(out.chart)
            content = make_payload(text=out.text, data=out.data, meta=meta)
        else:
            content = payload_from_output(out, meta=meta)

        self._log.info("tool_ok", tool_call_id=request.id, tool=name)
        return ToolInvocationResult(id=request.id, name=name, ok=True, content=content)


def chart_handler(market: MarketData) -> ToolHandler:
    def handle(args: dict[str, Any]) -> ToolOutput:
        symbol = str(args["symbol"]).upper()
        period = args["period"]
        chart = market.chart(symbol, period)
        return ToolOutput(
            text=(
                f"Chart for {chart.symbol} ({period}) has been generated and displayed to the user. "
                f"The current price is {chart.latest_price:.2f}."
            ),
            data={
                "symbol": chart.symbol,
                "period": chart.period,
                "trend": chart.trend,
                "points": len(chart.points),
                "latest_price": chart.latest_price,
            },
            chart=chart,
        )

    return handle


def price_handler(market: MarketData) -> ToolHandler:
    def handle(args: dict[str, Any]) -> ToolOutput:
        symbol = str(args["symbol"]).upper()
        price = market.quote(symbol)
        return ToolOutput(
            text=f"The current price of {symbol} is ${price:,.2f}.",
            data={"symbol": symbol, "price": price, "currency": "USD"},
        )

    return handle


def build_default_executor(
    registry: ToolRegistry,
    *,
    cfg: ToolsConfig | None = None,
    market: MarketData | None = None,
) -> ToolExecutor:
    executor = ToolExecutor.from_config(cfg or ToolsConfig(), registry=registry)
    market = market or MarketData()
    executor.register_handler(STOCK_CHART.name, chart_handler(market))
    executor.register_handler(STOCK_PRICE.name, price_handler(market))
    return executor
