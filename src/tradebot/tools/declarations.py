from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from tradebot.core.types import PERIODS

# Substituted for a required argument the model left out.
UNKNOWN = "UNKNOWN"

JSON_TYPES = frozenset({"string", "number", "integer", "boolean"})


@dataclass(frozen=True, slots=True)
class ParameterSpec:
    type: str
    description: str
    enum: tuple[str, ...] | None = None
    default: Any = None


@dataclass(frozen=True, slots=True)
class ToolDeclaration:
    """Name, description and typed parameter schema of a callable tool."""

    name: str
    description: str
    parameters: Mapping[str, ParameterSpec] = field(default_factory=dict, hash=False)
    required: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        # Freeze the mapping so a registered declaration cannot drift.
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))
        object.__setattr__(self, "required", frozenset(self.required))


STOCK_CHART = ToolDeclaration(
    name="getStockChart",
    description=(
        "Generates a visual stock price chart for a given symbol and time period. "
        'Use this when the user asks to "see", "show", "plot" or "visualize" a stock or crypto chart.'
    ),
    parameters={
        "symbol": ParameterSpec(
            type="string",
            description="The stock or crypto ticker symbol (e.g., AAPL, BTC, TSLA).",
        ),
        "period": ParameterSpec(
            type="string",
            description="The time period for the chart. Defaults to 1M if not specified.",
            enum=PERIODS,
            default="1M",
        ),
    },
    required=frozenset({"symbol"}),
)

STOCK_PRICE = ToolDeclaration(
    name="getStockPrice",
    description=(
        "Returns the current price of a stock or crypto ticker. "
        "Use this whenever the user asks what something costs or trades at right now."
    ),
    parameters={
        "symbol": ParameterSpec(
            type="string",
            description="The stock or crypto ticker symbol (e.g., AAPL, BTC, TSLA).",
        ),
    },
    required=frozenset({"symbol"}),
)
