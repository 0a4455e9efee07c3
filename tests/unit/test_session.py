from __future__ import annotations

import json

import pytest
from scripted_model import ScriptedModel, call, text

from tradebot.core.types import StreamFragment, ToolInvocationResult
from tradebot.orchestrator.session import ChatSession
from tradebot.tools.declarations import STOCK_CHART, STOCK_PRICE
from tradebot.tools.tool_result_codec import make_payload


def _session(model: ScriptedModel) -> ChatSession:
    return ChatSession(model=model, tools=[STOCK_CHART, STOCK_PRICE], system_instruction="be brief")


def _ok(call_id: str, name: str, body: str) -> ToolInvocationResult:
    return ToolInvocationResult(
        id=call_id,
        name=name,
        ok=True,
        content=make_payload(text=body, data={}, meta={"tool_call_id": call_id, "tool_name": name}),
    )


def test_history_starts_with_system_instruction() -> None:
    session = _session(ScriptedModel())
    assert session.history == [{"role": "system", "content": "be brief"}]
    assert session.session_id


def test_exchange_is_recorded_once_consumed() -> None:
    model = ScriptedModel(text("Hi ", "there."))
    session = _session(model)

    fragments = list(session.send_message("hello"))
    session.end_exchange()

    assert [f.text for f in fragments] == ["Hi ", "there."]
    assert session.history[1:] == [
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "Hi there."},
    ]
    assert [t["function"]["name"] for t in model.calls[0]["tools"]] == ["getStockChart", "getStockPrice"]


def test_tool_results_follow_the_assistant_call() -> None:
    req = call("c1", "getStockPrice", symbol="AAPL")
    model = ScriptedModel(
        [StreamFragment(text="Looking. ", tool_requests=(req,))],
        text("AAPL is up."),
    )
    session = _session(model)

    for _ in session.send_message("AAPL?"):
        pass
    resumed = session.send_tool_results([req], [_ok("c1", "getStockPrice", "The current price of AAPL is $1.00.")])
    list(resumed)
    session.end_exchange()

    roles = [m["role"] for m in session.history]
    assert roles == ["system", "user", "assistant", "tool", "assistant"]

    assistant = session.history[2]
    assert assistant["content"] == "Looking. "
    assert assistant["tool_calls"][0]["id"] == "c1"
    assert json.loads(assistant["tool_calls"][0]["function"]["arguments"]) == {"symbol": "AAPL"}

    tool_msg = session.history[3]
    assert tool_msg["tool_call_id"] == "c1"
    assert json.loads(tool_msg["content"])["text"] == "The current price of AAPL is $1.00."

    # The resumed exchange saw the tool result.
    assert model.calls[1]["messages"][-1]["role"] == "tool"


def test_results_must_answer_the_batch_in_order() -> None:
    a = call("a", "getStockPrice", symbol="AAPL")
    b = call("b", "getStockPrice", symbol="MSFT")
    session = _session(ScriptedModel([StreamFragment(tool_requests=(a, b))]))
    list(session.send_message("two prices"))

    with pytest.raises(ValueError):
        session.record_tool_results([a, b], [_ok("b", b.name, "x"), _ok("a", a.name, "y")])
    with pytest.raises(ValueError):
        session.record_tool_results([a, b], [_ok("a", a.name, "y")])


def test_rollback_drops_only_the_current_turn() -> None:
    session = _session(ScriptedModel(text("one"), text("two")))

    session.begin_turn()
    list(session.send_message("first"))
    session.end_exchange()
    session.commit_turn()
    kept = session.history

    session.begin_turn()
    list(session.send_message("second"))
    session.rollback()

    assert session.history == kept


def test_rollback_without_open_turn_is_a_noop() -> None:
    session = _session(ScriptedModel())
    session.rollback()
    assert len(session.history) == 1


def test_closing_the_exchange_closes_the_model_stream() -> None:
    model = ScriptedModel(text("a", "b", "c"))
    session = _session(model)

    stream = session.send_message("hi")
    next(stream)
    stream.close()

    assert model.closed == 1
