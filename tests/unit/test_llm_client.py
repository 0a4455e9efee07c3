from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import pytest
from pydantic import SecretStr

from tradebot.core.config import ModelConfig
from tradebot.core.errors import ConfigError, ModelStreamError
from tradebot.core.types import Citation
from tradebot.llm.client import FakeChatModel, OpenAIChatModel
from tradebot.tools.declarations import STOCK_CHART, STOCK_PRICE
from tradebot.tools.openai_tools import get_openai_tool_specs

TOOLS = get_openai_tool_specs([STOCK_CHART, STOCK_PRICE])


def _chunk(*, content: str | None = None, tool_calls: Any = None, annotations: Any = None, finish_reason: str | None = None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls, annotations=annotations)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)])


def _tc(index: int, *, id: str | None = None, name: str | None = None, arguments: str | None = None):
    return SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))


class _FakeCompletions:
    def __init__(self, chunks: list[Any]) -> None:
        self._chunks = chunks
        self.kwargs: dict[str, Any] = {}

    def create(self, **kwargs: Any):
        self.kwargs = kwargs
        return iter(self._chunks)


def _model(chunks: list[Any]) -> tuple[OpenAIChatModel, _FakeCompletions]:
    model = OpenAIChatModel(ModelConfig(api_key=SecretStr("k_test"), base_url="http://localhost:9/v1"))
    completions = _FakeCompletions(chunks)
    model._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return model, completions


def test_text_deltas_become_fragments() -> None:
    model, completions = _model(
        [
            _chunk(content="Hel"),
            _chunk(content=""),
            _chunk(content="lo"),
            _chunk(finish_reason="stop"),
        ]
    )

    fragments = list(model.stream(messages=[{"role": "user", "content": "hi"}]))

    assert [f.text for f in fragments] == ["Hel", "lo"]
    assert all(not f.tool_requests for f in fragments)
    assert completions.kwargs["stream"] is True
    assert "tools" not in completions.kwargs


def test_tool_call_deltas_are_batched_on_finish() -> None:
    model, completions = _model(
        [
            _chunk(content="Checking. "),
            _chunk(tool_calls=[_tc(0, id="call_1", name="getStockChart", arguments='{"symbol": "E')]),
            _chunk(tool_calls=[_tc(0, arguments='TH", "period": "1Y"}')]),
            _chunk(tool_calls=[_tc(1, id="call_2", name="getStockPrice", arguments='{"symbol": "ETH"}')]),
            _chunk(finish_reason="tool_calls"),
        ]
    )

    fragments = list(model.stream(messages=[{"role": "user", "content": "ETH"}], tools=TOOLS))

    assert completions.kwargs["tools"] == TOOLS
    assert completions.kwargs["tool_choice"] == "auto"
    assert fragments[0].text == "Checking. "
    assert len(fragments) == 2

    batch = fragments[1].tool_requests
    assert [(r.id, r.name, r.arguments) for r in batch] == [
        ("call_1", "getStockChart", {"symbol": "ETH", "period": "1Y"}),
        ("call_2", "getStockPrice", {"symbol": "ETH"}),
    ]


def test_pending_calls_flush_at_end_of_stream() -> None:
    model, _ = _model([_chunk(tool_calls=[_tc(0, id="c", name="getStockPrice", arguments='{"symbol":"AAPL"}')])])

    fragments = list(model.stream(messages=[], tools=TOOLS))

    assert len(fragments) == 1
    assert fragments[0].tool_requests[0].id == "c"


def test_invalid_arguments_still_produce_a_request() -> None:
    model, _ = _model(
        [
            _chunk(tool_calls=[_tc(0, id="bad", name="getStockPrice", arguments="{not json")]),
            _chunk(finish_reason="tool_calls"),
        ]
    )

    (fragment,) = list(model.stream(messages=[], tools=TOOLS))

    req = fragment.tool_requests[0]
    assert req.id == "bad"
    assert req.name == "getStockPrice"
    assert req.arguments == {}


def test_invalid_call_keeps_its_position_in_the_batch() -> None:
    model, _ = _model(
        [
            _chunk(
                tool_calls=[
                    _tc(0, id="first", name="getStockChart", arguments="{bad"),
                    _tc(1, id="second", name="getStockPrice", arguments='{"symbol": "AAPL"}'),
                ]
            ),
            _chunk(finish_reason="tool_calls"),
        ]
    )

    (fragment,) = list(model.stream(messages=[], tools=TOOLS))

    assert [(r.id, r.arguments) for r in fragment.tool_requests] == [
        ("first", {}),
        ("second", {"symbol": "AAPL"}),
    ]


def test_url_citations_are_extracted() -> None:
    annotations = [
        SimpleNamespace(type="url_citation", url_citation=SimpleNamespace(url="https://a.example", title="A")),
        {"type": "file_citation", "file_id": "f1"},
        {"type": "url_citation", "url_citation": {"url": "https://b.example", "title": "B"}},
    ]
    model, _ = _model([_chunk(content="Sourced.", annotations=annotations)])

    (fragment,) = list(model.stream(messages=[]))

    assert fragment.citations == (
        Citation(title="A", uri="https://a.example"),
        Citation(title="B", uri="https://b.example"),
    )


def test_malformed_tool_calls_delta_raises() -> None:
    model, _ = _model([_chunk(tool_calls={"index": 0})])

    with pytest.raises(ModelStreamError):
        list(model.stream(messages=[]))


@pytest.mark.parametrize("field", ["api_key", "model", "base_url"])
def test_blank_settings_are_rejected(field: str) -> None:
    values: dict[str, Any] = {"api_key": SecretStr("k_test"), "model": "m", "base_url": "http://x"}
    values[field] = SecretStr(" ") if field == "api_key" else ""

    with pytest.raises(ConfigError) as exc:
        OpenAIChatModel(ModelConfig(**values))

    assert exc.value.path == f"model.{field}"


def test_fake_model_requests_chart_and_price() -> None:
    fake = FakeChatModel()
    messages = [{"role": "user", "content": "Show me a chart for ETH over a year and its current price"}]

    (fragment,) = list(fake.stream(messages=messages, tools=TOOLS))

    assert [(r.name, r.arguments) for r in fragment.tool_requests] == [
        ("getStockChart", {"symbol": "ETH", "period": "1Y"}),
        ("getStockPrice", {"symbol": "ETH"}),
    ]
    assert len({r.id for r in fragment.tool_requests}) == 2


def test_fake_model_summarizes_tool_results() -> None:
    fake = FakeChatModel()
    messages = [
        {"role": "user", "content": "What's the price of AAPL?"},
        {"role": "tool", "tool_call_id": "c", "content": json.dumps({"text": "The current price of AAPL is $10.00."})},
    ]

    text = "".join(f.text or "" for f in fake.stream(messages=messages, tools=TOOLS))

    assert text == "Here is what I found. The current price of AAPL is $10.00."


def test_fake_model_without_tools_just_talks() -> None:
    fragments = list(FakeChatModel().stream(messages=[{"role": "user", "content": "hello"}], tools=TOOLS))

    assert fragments
    assert all(not f.tool_requests for f in fragments)
