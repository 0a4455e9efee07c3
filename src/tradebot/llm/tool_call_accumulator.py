"""Streaming tool-call argument accumulator.

OpenAI-compatible streams split a tool call across deltas: the first delta for
a call carries its `id` and function name, later ones only the `index` and a
fragment of the JSON arguments. Calls are therefore keyed by index.

Parsing is best-effort: a call whose arguments never become a JSON object is
reported as invalid rather than raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tradebot.core.types import ToolInvocationRequest
from tradebot.observability import get_logger
from tradebot.observability.ids import new_tool_call_id
from tradebot.tools.arguments import parse_arguments_json


@dataclass(frozen=True)
class InvalidToolCall:
    id: str
    name: str | None
    raw_args: str
    error: str


@dataclass(slots=True)
class _Pending:
    id: str | None = None
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    def __init__(self) -> None:
        self._pending: dict[int, _Pending] = {}
        self._log = get_logger("tradebot.llm")

    def __bool__(self) -> bool:
        return bool(self._pending)

    def add_delta(self, delta_tool_calls: list[dict[str, Any]]) -> None:
        """Consume normalized deltas: {"index", "id"?, "function": {"name"?, "arguments"?}}."""

        for position, tc in enumerate(delta_tool_calls):
            index = tc.get("index")
            if not isinstance(index, int):
                index = position

            acc = self._pending.setdefault(index, _Pending())

            tc_id = tc.get("id")
            if isinstance(tc_id, str) and tc_id and acc.id is None:
                acc.id = tc_id

            fn = tc.get("function") or {}
            name = fn.get("name")
            if isinstance(name, str) and name:
                acc.name = name

            args = fn.get("arguments")
            if isinstance(args, str) and args:
                acc.arguments += args

    def finalize(self) -> tuple[list[ToolInvocationRequest], list[InvalidToolCall]]:
        """Return (complete requests, invalid calls) in index order and reset."""

        requests: list[ToolInvocationRequest] = []
        invalid: list[InvalidToolCall] = []
        for item in self._take():
            if isinstance(item, InvalidToolCall):
                invalid.append(item)
            else:
                requests.append(item)
        return requests, invalid

    def drain(self) -> list[ToolInvocationRequest]:
        """Return the whole batch in index order and reset.

        An invalid call keeps its slot as a request with empty arguments, so
        its id is still answered and fail-soft decoding fills the defaults.
        """

        return [
            ToolInvocationRequest(id=item.id, name=item.name or "", arguments={})
            if isinstance(item, InvalidToolCall)
            else item
            for item in self._take()
        ]

    def _take(self) -> list[ToolInvocationRequest | InvalidToolCall]:
        out: list[ToolInvocationRequest | InvalidToolCall] = []

        for index in sorted(self._pending):
            acc = self._pending[index]
            call_id = acc.id or new_tool_call_id()

            parsed = parse_arguments_json(acc.arguments)
            if parsed is None or not acc.name:
                error = "missing tool name" if acc.name == "" else "tool args must be a JSON object"
                out.append(InvalidToolCall(id=call_id, name=acc.name or None, raw_args=acc.arguments, error=error))
                self._log.warning(
                    "tool_call_invalid",
                    tool_call_id=call_id,
                    tool=acc.name or None,
                    arguments_len=len(acc.arguments),
                    error=error,
                )
                continue

            out.append(ToolInvocationRequest(id=call_id, name=acc.name, arguments=parsed))

        self._pending.clear()
        return out
