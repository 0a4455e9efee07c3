from __future__ import annotations

SYSTEM_INSTRUCTION = """You are TradeBot, an advanced financial assistant.
Your goal is to help users understand the markets with data-driven insights.

Capabilities:
1. Use 'getStockPrice' for every current-price question. Never guess a price.
2. Use 'getStockChart' ONLY when the user explicitly asks for a chart, visualization, or performance graph.

Style:
- Be professional, concise, and helpful.
- Use markdown for formatting (tables for data, bold for emphasis).
- If your answer draws on sources, you must cite them.
"""

GREETING = (
    "Hello! I'm TradeBot. I can help you analyze stock prices, visualize market trends, "
    "and find the latest financial news. Try asking 'What is the price of Apple?' or "
    "'Show me a chart for Bitcoin'."
)

EXAMPLE_PROMPTS = (
    "What is the price of AAPL?",
    "Show BTC chart",
    "Show me a chart for ETH over 1 year and its current price",
    "Plot TSLA for the last day",
)

# Shown by callers when a turn fails; the orchestrator itself never fabricates chat content.
FALLBACK_REPLY = (
    "I apologize, but I encountered an error connecting to the market data service. Please try again."
)

ROUND_TRIPS_EXHAUSTED_NOTE = "\n\n[Stopped after {n} tool round-trips without a final answer.]"

SKIPPED_TOOL_TEXT = "Not executed: the tool round-trip limit for this turn was reached."
