"""Model boundary: OpenAI-compatible streaming chat client.

The client turns a provider stream into a lazy sequence of StreamFragment:
- text deltas become text fragments as they arrive;
- URL citations (delta `annotations`) are attached best-effort;
- tool-call deltas are accumulated and emitted as one final fragment carrying
  the whole batch once the provider signals the end of the call.

The default endpoint is Gemini's OpenAI compatibility layer; any
OpenAI-compatible provider works.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterator, Protocol

from openai import OpenAI

from tradebot.core.config import ModelConfig
from tradebot.core.errors import ConfigError, ModelStreamError
from tradebot.core.types import Citation, StreamFragment, ToolInvocationRequest
from tradebot.observability import get_logger
from tradebot.observability.ids import new_tool_call_id

from .tool_call_accumulator import ToolCallAccumulator


class ChatModel(Protocol):
    def stream(
        self,
        *,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> Iterator[StreamFragment]: ...


class OpenAIChatModel:
    def __init__(self, cfg: ModelConfig) -> None:
        api_key = cfg.api_key.get_secret_value()
        if not api_key.strip():
            raise ConfigError("must be a non-empty string", path="model.api_key")
        if not cfg.base_url:
            raise ConfigError("must be a non-empty string", path="model.base_url")
        if not cfg.model:
            raise ConfigError("must be a non-empty string", path="model.model")

        self._cfg = cfg
        self._client = OpenAI(
            api_key=api_key,
            base_url=cfg.base_url,
            timeout=cfg.timeout_s,
            max_retries=cfg.max_retries,
        )
        self._log = get_logger("tradebot.llm")

    @property
    def model(self) -> str:
        return self._cfg.model

    def stream(
        self,
        *,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> Iterator[StreamFragment]:
        kwargs: dict[str, Any] = {"model": self._cfg.model, "messages": messages, "stream": True}
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        stream_iter = self._client.chat.completions.create(**kwargs)

        acc = ToolCallAccumulator()
        text_len = 0
        for ev in stream_iter:
            choices = getattr(ev, "choices", None) or []
            if not choices:
                continue

            choice = choices[0]
            delta = getattr(choice, "delta", None)
            if delta is not None:
                content = getattr(delta, "content", None)
                citations = _extract_citations(delta)
                if (isinstance(content, str) and content) or citations:
                    text = content if isinstance(content, str) and content else None
                    text_len += len(text or "")
                    yield StreamFragment(text=text, citations=citations)

                delta_tool_calls = getattr(delta, "tool_calls", None)
                if delta_tool_calls:
                    acc.add_delta(_normalize_tool_call_deltas(delta_tool_calls))

            if getattr(choice, "finish_reason", None) and acc:
                yield StreamFragment(tool_requests=tuple(acc.drain()))

        if acc:
            yield StreamFragment(tool_requests=tuple(acc.drain()))

        self._log.debug("model_stream_complete", model=self._cfg.model, text_len=text_len)


def _field(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _normalize_tool_call_deltas(delta_tool_calls: Any) -> list[dict[str, Any]]:
    if not isinstance(delta_tool_calls, (list, tuple)):
        raise ModelStreamError(f"tool_calls delta must be a list, got {type(delta_tool_calls).__name__}")

    normalized: list[dict[str, Any]] = []
    for tc in delta_tool_calls:
        fn = _field(tc, "function")
        fn_dict: dict[str, Any] = {}
        if fn is not None:
            name = _field(fn, "name")
            args = _field(fn, "arguments")
            if isinstance(name, str) and name:
                fn_dict["name"] = name
            if isinstance(args, str) and args:
                fn_dict["arguments"] = args
        normalized.append({"index": _field(tc, "index"), "id": _field(tc, "id"), "function": fn_dict})
    return normalized


def _extract_citations(delta: Any) -> tuple[Citation, ...]:
    """Best-effort extraction of `url_citation` annotations from a delta.

    Providers disagree on where (and whether) they attach sources, so anything
    unexpected is ignored rather than treated as a malformed stream.
    """

    annotations = _field(delta, "annotations")
    if not isinstance(annotations, (list, tuple)):
        return ()

    out: list[Citation] = []
    for ann in annotations:
        if _field(ann, "type") not in (None, "url_citation"):
            continue
        body = _field(ann, "url_citation") or ann
        uri = _field(body, "url") or _field(body, "uri")
        title = _field(body, "title")
        if isinstance(uri, str) and uri and isinstance(title, str) and title:
            out.append(Citation(title=title, uri=uri))
    return tuple(out)


_TICKER_RE = re.compile(r"\b[A-Z]{2,5}\b")
_PERIOD_WORDS = (("day", "1D"), ("week", "1W"), ("month", "1M"), ("year", "1Y"))
_CHART_WORDS = ("chart", "show", "plot", "visualize", "graph", "see")
_PRICE_WORDS = ("price", "cost", "trading at", "worth", "quote")


class FakeChatModel:
    """Offline stub driven by keywords; lets the orchestrator run without a provider."""

    def stream(
        self,
        *,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> Iterator[StreamFragment]:
        last = messages[-1] if messages else {}

        if last.get("role") == "tool":
            summaries = [_tool_text(m) for m in _trailing_tool_messages(messages)]
            yield from _words("Here is what I found. " + " ".join(s for s in summaries if s))
            return

        text = str(last.get("content") or "")
        lowered = text.lower()
        symbol = next(iter(_TICKER_RE.findall(text)), None)
        tool_names = {_field(t.get("function") or {}, "name") for t in tools or []}

        requests: list[ToolInvocationRequest] = []
        if symbol and "getStockChart" in tool_names and any(w in lowered for w in _CHART_WORDS):
            period = next((p for word, p in _PERIOD_WORDS if word in lowered), "1M")
            requests.append(
                ToolInvocationRequest(id=new_tool_call_id(), name="getStockChart", arguments={"symbol": symbol, "period": period})
            )
        if symbol and "getStockPrice" in tool_names and any(w in lowered for w in _PRICE_WORDS):
            requests.append(ToolInvocationRequest(id=new_tool_call_id(), name="getStockPrice", arguments={"symbol": symbol}))

        if requests:
            yield StreamFragment(text="Let me check that for you. ", tool_requests=tuple(requests))
            return

        yield from _words(
            "(fake) I can show charts and look up prices. "
            "Try 'Show me a chart for BTC over 1 week' or 'What's the price of AAPL?'."
        )


def _words(text: str) -> Iterator[StreamFragment]:
    for part in re.findall(r"\S+\s*", text):
        yield StreamFragment(text=part)


def _trailing_tool_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for m in reversed(messages):
        if m.get("role") != "tool":
            break
        out.append(m)
    return list(reversed(out))


def _tool_text(message: dict[str, Any]) -> str:
    try:
        payload = json.loads(message.get("content") or "{}")
    except json.JSONDecodeError:
        return str(message.get("content") or "")
    return str(payload.get("text", "")) if isinstance(payload, dict) else ""
