"""TradeBot: a streaming, tool-calling market assistant."""

from __future__ import annotations

from tradebot.core import __version__

__all__ = ["__version__"]
