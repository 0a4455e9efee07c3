from __future__ import annotations

from typing import Any, Iterator, Sequence

from tradebot.core.types import StreamFragment, ToolInvocationRequest, ToolInvocationResult
from tradebot.llm.client import ChatModel
from tradebot.observability import get_logger
from tradebot.observability.ids import new_session_id
from tradebot.tools.declarations import ToolDeclaration
from tradebot.tools.openai_tools import get_openai_tool_specs
from tradebot.tools.tool_messages import assistant_message, tool_message_from_result


class ChatSession:
    """Conversation state: an append-only history of OpenAI chat messages.

    Each call to `send_message` / `send_tool_results` opens one exchange with
    the model and returns its fragment iterator. Text is recorded as the
    iterator is consumed; the exchange is committed to history as a single
    assistant message when it ends (`end_exchange`) or when its tool batch is
    answered (`send_tool_results` / `record_tool_results`).
    """

    def __init__(
        self,
        *,
        model: ChatModel,
        tools: Sequence[ToolDeclaration],
        system_instruction: str,
    ) -> None:
        self.session_id = new_session_id()
        self._model = model
        self._tool_specs = get_openai_tool_specs(tools)
        self._history: list[dict[str, Any]] = [{"role": "system", "content": system_instruction}]
        self._exchange_text: list[str] | None = None
        self._checkpoint: int | None = None
        self._log = get_logger("tradebot.session")

    @property
    def history(self) -> list[dict[str, Any]]:
        return [dict(m) for m in self._history]

    @property
    def tool_specs(self) -> list[dict[str, Any]]:
        return list(self._tool_specs)

    # Turn boundaries

    def begin_turn(self) -> None:
        self._checkpoint = len(self._history)

    def commit_turn(self) -> None:
        self._checkpoint = None

    def rollback(self) -> None:
        """Drop everything the current turn appended."""

        if self._checkpoint is None:
            return
        dropped = len(self._history) - self._checkpoint
        del self._history[self._checkpoint :]
        self._exchange_text = None
        self._checkpoint = None
        self._log.info("session_rollback", dropped_messages=dropped)

    # Exchanges

    def send_message(self, text: str) -> Iterator[StreamFragment]:
        self._history.append({"role": "user", "content": text})
        return self._open_exchange()

    def send_tool_results(
        self,
        requests: Sequence[ToolInvocationRequest],
        results: Sequence[ToolInvocationResult],
    ) -> Iterator[StreamFragment]:
        """Answer the open exchange's tool batch and resume the model."""

        self.record_tool_results(requests, results)
        return self._open_exchange()

    def record_tool_results(
        self,
        requests: Sequence[ToolInvocationRequest],
        results: Sequence[ToolInvocationResult],
    ) -> None:
        if [r.id for r in requests] != [r.id for r in results]:
            raise ValueError("tool results must answer every request of the batch, in order")

        self._history.append(assistant_message(self._take_exchange_text(), requests))
        self._history.extend(tool_message_from_result(r) for r in results)

    def end_exchange(self) -> None:
        self._history.append(assistant_message(self._take_exchange_text()))

    def _take_exchange_text(self) -> str:
        text = "".join(self._exchange_text or [])
        self._exchange_text = None
        return text

    def _open_exchange(self) -> Iterator[StreamFragment]:
        self._exchange_text = []
        upstream = self._model.stream(messages=list(self._history), tools=self._tool_specs or None)
        return self._recording(upstream, self._exchange_text)

    @staticmethod
    def _recording(upstream: Iterator[StreamFragment], sink: list[str]) -> Iterator[StreamFragment]:
        try:
            for fragment in upstream:
                if fragment.text:
                    sink.append(fragment.text)
                yield fragment
        finally:
            close = getattr(upstream, "close", None)
            if callable(close):
                close()
