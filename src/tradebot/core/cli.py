from __future__ import annotations

import argparse
import os
import sys
from typing import TextIO

from tradebot.core.types import ChartSeries, TurnResult
from tradebot.observability import configure_logging, get_logger
from tradebot.orchestrator.prompts import EXAMPLE_PROMPTS, FALLBACK_REPLY, GREETING
from tradebot.orchestrator.streaming import StreamingOrchestrator

from .config import API_KEY_ENV_VARS, load_config

_TREND_MARKS = {"up": "▲", "down": "▼", "neutral": "■"}
_EXIT_WORDS = {"exit", "quit", ":q"}


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tradebot", description="TradeBot market assistant")
    p.add_argument("--config", default="configs/app.yaml", help="YAML config path")
    p.add_argument("--log-level", default=None, help="log level (overrides logging.level)")
    p.add_argument("--text", default=None, help="send a single message and exit")
    p.add_argument("--fake", action="store_true", help="use the offline FakeChatModel")
    return p


def format_chart(chart: ChartSeries) -> str:
    first, last = chart.points[0], chart.points[-1]
    return (
        f"[chart {chart.render_key}] {chart.symbol} {chart.period} "
        f"{_TREND_MARKS[chart.trend]} {chart.trend} | {len(chart.points)} points "
        f"| {first.label} {first.price:.2f} -> {last.label} {last.price:.2f}"
    )


def format_sources(result: TurnResult) -> str:
    lines = ["Sources:"]
    lines.extend(f"  - {c.title}: {c.uri}" for c in result.sources)
    return "\n".join(lines)


def run_turn(orch: StreamingOrchestrator, text: str, *, out: TextIO) -> bool:
    """Stream one turn to `out`. Returns False when the turn failed."""

    log = get_logger("tradebot.cli")

    def on_text(fragment: str) -> None:
        out.write(fragment)
        out.flush()

    def on_chart(chart: ChartSeries) -> None:
        out.write(f"\n{format_chart(chart)}\n")
        out.flush()

    try:
        result = orch.send_message_sync(text, on_text, on_chart)
    except Exception:  # noqa: BLE001
        log.exception("turn_error")
        out.write(f"\n{FALLBACK_REPLY}\n")
        return False

    out.write("\n")
    if result.sources:
        out.write(format_sources(result) + "\n")
    return True


def _repl(orch: StreamingOrchestrator, *, out: TextIO) -> None:
    out.write(GREETING + "\n")
    for example in EXAMPLE_PROMPTS:
        out.write(f"  * {example}\n")

    while True:
        try:
            line = input("\n> ")
        except EOFError:
            out.write("\n")
            return

        text = line.strip()
        if not text:
            continue
        if text.lower() in _EXIT_WORDS:
            return
        if text.lower() == "/reset":
            orch.reset()
            out.write("(new conversation)\n")
            continue

        run_turn(orch, text, out=out)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    # Offline stub: allow running without a real key.
    if args.fake and not any(os.getenv(k) for k in API_KEY_ENV_VARS):
        os.environ[API_KEY_ENV_VARS[0]] = "k_fake"

    cfg = load_config(args.config)
    configure_logging(level=args.log_level or cfg.logging.level)

    orch = StreamingOrchestrator.from_config(cfg, fake=args.fake)

    if args.text is not None:
        return 0 if run_turn(orch, args.text, out=sys.stdout) else 1

    _repl(orch, out=sys.stdout)
    return 0
