from __future__ import annotations

import contextvars
import json
import logging

from tradebot.observability import add_error, bind_context, current_state, set_state
from tradebot.observability.context import snapshot
from tradebot.observability.ids import new_tool_call_id, new_trace_id
from tradebot.observability.logging import JsonFormatter, KVLogger


def _record(msg: str = "turn_done", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("tradebot.test", logging.INFO, __file__, 1, msg, (), None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_json_formatter_includes_turn_context_and_fields() -> None:
    def scenario() -> dict:
        bind_context(trace_id="t1", session_id="s1", turn_id=2)
        set_state("STREAMING")
        add_error("boom")
        return json.loads(JsonFormatter().format(_record(round_trips=1, obj=object())))

    payload = contextvars.copy_context().run(scenario)

    assert payload["message"] == "turn_done"
    assert payload["level"] == "INFO"
    assert payload["trace_id"] == "t1"
    assert payload["session_id"] == "s1"
    assert payload["turn_id"] == 2
    assert payload["state"] == "STREAMING"
    assert payload["errors"] == ["boom"]
    assert payload["round_trips"] == 1
    assert payload["obj"].startswith("<object object")


def test_snapshot_omits_unset_values() -> None:
    out = contextvars.copy_context().run(snapshot)
    assert "trace_id" not in out
    assert out["errors"] == []


def test_bind_context_resets_state_and_errors() -> None:
    def scenario() -> tuple:
        bind_context(trace_id="a", session_id=None, turn_id=1)
        set_state("DONE")
        add_error("x")
        bind_context(trace_id="b", session_id=None, turn_id=2)
        return current_state(), snapshot()["errors"]

    assert contextvars.copy_context().run(scenario) == (None, [])


def test_kv_logger_passes_fields_as_extra() -> None:
    records: list[logging.LogRecord] = []

    class _Capture(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            records.append(record)

    base = logging.getLogger("tradebot.test.kv")
    base.setLevel(logging.DEBUG)
    base.addHandler(_Capture())
    try:
        KVLogger(base).info("tool_ok", tool="getStockPrice", latency_ms=1.5)
    finally:
        base.handlers.clear()

    assert len(records) == 1
    assert records[0].tool == "getStockPrice"
    assert records[0].latency_ms == 1.5


def test_ids_have_expected_shape() -> None:
    assert len(new_trace_id()) == 32
    call_id = new_tool_call_id()
    assert call_id.startswith("call_")
    assert call_id != new_tool_call_id()
