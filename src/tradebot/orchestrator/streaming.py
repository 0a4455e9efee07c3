from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, cast

from langgraph.graph import END, START, StateGraph

from tradebot.core.config import AppConfig
from tradebot.core.errors import SessionBusyError
from tradebot.core.types import Citation, StreamFragment, ToolInvocationRequest, ToolInvocationResult, TurnResult
from tradebot.llm.client import ChatModel, FakeChatModel, OpenAIChatModel
from tradebot.observability import add_error, bind_context, get_logger, set_state
from tradebot.observability.context import bind_session
from tradebot.observability.ids import new_trace_id
from tradebot.tools.executor import ToolExecutor, build_default_executor
from tradebot.tools.market_data import MarketData
from tradebot.tools.registry import build_default_registry
from tradebot.tools.tool_result_codec import make_payload, normalize_error

from .graph_state import AWAITING_SESSION, DONE, FAILED, HANDLING_TOOLS, STREAMING, TurnState
from .prompts import ROUND_TRIPS_EXHAUSTED_NOTE, SKIPPED_TOOL_TEXT, SYSTEM_INSTRUCTION
from .session import ChatSession
from .sink import ChartCallback, IncrementalSink, TextCallback

_END_OF_STREAM = object()


@dataclass(slots=True)
class _Turn:
    """Live, non-serializable parts of one turn, shared by the graph nodes."""

    sink: IncrementalSink
    session: ChatSession | None = None
    stream: Iterator[StreamFragment] | None = None
    pulling: bool = False
    abandoned: bool = False
    states: list[str] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def enter(self, state: str) -> None:
        set_state(state)
        self.states.append(state)

    async def next_fragment(self) -> StreamFragment | None:
        """Advance the blocking model stream off the event loop."""

        assert self.stream is not None
        with self.lock:
            self.pulling = True
        item = await asyncio.to_thread(self._pull, self.stream)
        return None if item is _END_OF_STREAM else cast(StreamFragment, item)

    def _pull(self, stream: Iterator[StreamFragment]) -> object:
        try:
            return next(stream, _END_OF_STREAM)
        finally:
            with self.lock:
                self.pulling = False
                if self.abandoned:
                    # The turn gave up on this stream while next() was running.
                    self.abandoned = False
                    _close(stream)
                    get_logger("tradebot.orchestrator").info("stream_closed_late")

    def close_stream(self) -> None:
        with self.lock:
            if self.stream is not None:
                if self.pulling:
                    # A generator running in the worker thread cannot be closed
                    # from here; _pull closes it once next() returns.
                    self.abandoned = True
                else:
                    _close(self.stream)
            self.stream = None


def _close(stream: Iterator[StreamFragment]) -> None:
    close = getattr(stream, "close", None)
    if callable(close):
        close()


class StreamingOrchestrator:
    """AWAITING_SESSION → STREAMING → (HANDLING_TOOLS → STREAMING)* → DONE.

    One call to `send_message` is one logical turn, possibly spanning several
    model exchanges. Text fragments and charts reach the caller through the
    sink as soon as they exist; the returned TurnResult holds the whole turn.
    """

    def __init__(
        self,
        *,
        model_factory: Callable[[], ChatModel],
        executor: ToolExecutor,
        max_round_trips: int = 5,
        system_instruction: str | None = None,
    ) -> None:
        if max_round_trips < 1:
            raise ValueError("max_round_trips must be >= 1")

        self._model_factory = model_factory
        self._executor = executor
        self._max_round_trips = int(max_round_trips)
        self._system_instruction = system_instruction or SYSTEM_INSTRUCTION

        self._session: ChatSession | None = None
        self._busy = False
        self._turn_id = 0
        self._last_transitions: tuple[str, ...] = ()
        self._log = get_logger("tradebot.orchestrator")

    @classmethod
    def from_config(
        cls,
        cfg: AppConfig,
        *,
        fake: bool = False,
        market: MarketData | None = None,
    ) -> "StreamingOrchestrator":
        executor = build_default_executor(build_default_registry(), cfg=cfg.tools, market=market)
        factory: Callable[[], ChatModel] = FakeChatModel if fake else (lambda: OpenAIChatModel(cfg.model))
        return cls(
            model_factory=factory,
            executor=executor,
            max_round_trips=cfg.tools.max_round_trips,
            system_instruction=cfg.chat.system_instruction,
        )

    @property
    def session(self) -> ChatSession | None:
        return self._session

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def last_transitions(self) -> tuple[str, ...]:
        """States visited by the most recent turn, in order."""

        return self._last_transitions

    def reset(self) -> None:
        """Forget the conversation; the next message opens a new session."""

        if self._busy:
            raise SessionBusyError("cannot reset while a turn is in flight")
        self._session = None

    async def send_message(
        self,
        message: str,
        on_text_fragment: TextCallback | None = None,
        on_chart: ChartCallback | None = None,
    ) -> TurnResult:
        if self._busy:
            raise SessionBusyError("a turn is already in flight for this session")
        self._busy = True

        self._turn_id += 1
        bind_context(
            trace_id=new_trace_id(),
            session_id=self._session.session_id if self._session else None,
            turn_id=self._turn_id,
        )

        turn = _Turn(sink=IncrementalSink(on_text=on_text_fragment, on_chart=on_chart))
        graph = self._build_graph(turn)

        self._log.info("turn_start", user_text_len=len(message or ""))
        t0 = time.perf_counter()
        try:
            out = cast(
                TurnState,
                await graph.ainvoke(
                    {
                        "user_text": message,
                        "text_parts": [],
                        "sources": [],
                        "errors": [],
                        "pending": [],
                        "round_trips": 0,
                        "truncated": False,
                    },
                    config={"recursion_limit": 2 * self._max_round_trips + 10},
                ),
            )
        except (Exception, asyncio.CancelledError) as e:
            turn.states.append(FAILED)
            set_state(FAILED)
            add_error(f"{type(e).__name__}: {e}")
            turn.close_stream()
            if self._session is not None:
                self._session.rollback()
            self._log.warning(
                "turn_failed",
                error_type=type(e).__name__,
                latency_ms=round((time.perf_counter() - t0) * 1000, 2),
            )
            raise
        finally:
            self._last_transitions = tuple(turn.states)
            self._busy = False

        if self._session is not None:
            self._session.commit_turn()

        result = TurnResult(
            full_text="".join(out.get("text_parts", [])),
            sources=tuple(out.get("sources", [])),
            round_trips=int(out.get("round_trips", 0)),
            truncated=bool(out.get("truncated", False)),
        )
        self._log.info(
            "turn_done",
            latency_ms=round((time.perf_counter() - t0) * 1000, 2),
            round_trips=result.round_trips,
            truncated=result.truncated,
            text_len=len(result.full_text),
            sources=len(result.sources),
        )
        return result

    def send_message_sync(
        self,
        message: str,
        on_text_fragment: TextCallback | None = None,
        on_chart: ChartCallback | None = None,
    ) -> TurnResult:
        return asyncio.run(self.send_message(message, on_text_fragment, on_chart))

    def _ensure_session(self) -> ChatSession:
        if self._session is None:
            # Model construction validates credentials: configuration errors
            # surface here, before any fragment is produced.
            self._session = ChatSession(
                model=self._model_factory(),
                tools=self._executor.registry.describe_all(),
                system_instruction=self._system_instruction,
            )
            self._log.info("session_created", tools=len(self._session.tool_specs))
        return self._session

    def _build_graph(self, turn: _Turn):
        executor = self._executor
        max_round_trips = self._max_round_trips

        async def awaiting_session_node(state: TurnState) -> dict[str, Any]:
            turn.enter(AWAITING_SESSION)
            session = self._ensure_session()
            bind_session(session.session_id)
            session.begin_turn()

            turn.session = session
            turn.stream = session.send_message(str(state.get("user_text", "")))
            return {}

        async def streaming_node(state: TurnState) -> dict[str, Any]:
            turn.enter(STREAMING)
            assert turn.session is not None

            seen = {c.uri for c in state.get("sources", [])}
            text_parts: list[str] = []
            sources: list[Citation] = []

            while True:
                fragment = await turn.next_fragment()
                if fragment is None:
                    turn.stream = None
                    turn.session.end_exchange()
                    self._log.info("stream_done", text_len=sum(len(t) for t in text_parts))
                    return {"text_parts": text_parts, "sources": sources, "pending": []}

                if fragment.text:
                    text_parts.append(fragment.text)
                    turn.sink.text(fragment.text)

                for citation in fragment.citations:
                    if citation.uri not in seen:
                        seen.add(citation.uri)
                        sources.append(citation)

                if fragment.tool_requests:
                    # The exchange ends at its tool batch.
                    turn.close_stream()
                    return {"text_parts": text_parts, "sources": sources, "pending": list(fragment.tool_requests)}

        def after_streaming(state: TurnState) -> str:
            if not state.get("pending"):
                return "done"
            if int(state.get("round_trips", 0)) >= max_round_trips:
                return "exhausted"
            return "handling_tools"

        async def handling_tools_node(state: TurnState) -> dict[str, Any]:
            turn.enter(HANDLING_TOOLS)
            assert turn.session is not None

            batch: list[ToolInvocationRequest] = list(state.get("pending", []))
            results = [executor.execute(req, on_chart=turn.sink.chart) for req in batch]
            round_trips = int(state.get("round_trips", 0)) + 1

            self._log.info(
                "tool_round_trip",
                round_trip=round_trips,
                tools=[req.name for req in batch],
                failed=sum(1 for r in results if not r.ok),
            )

            turn.stream = turn.session.send_tool_results(batch, results)
            return {"pending": [], "round_trips": round_trips}

        async def exhausted_node(state: TurnState) -> dict[str, Any]:
            assert turn.session is not None

            batch: list[ToolInvocationRequest] = list(state.get("pending", []))
            turn.session.record_tool_results(batch, [_skipped(req) for req in batch])

            round_trips = int(state.get("round_trips", 0))
            self._log.warning("tool_round_trips_exhausted", round_trips=round_trips, dropped=len(batch))

            note = ROUND_TRIPS_EXHAUSTED_NOTE.format(n=round_trips)
            turn.sink.text(note)
            return {
                "text_parts": [note],
                "pending": [],
                "truncated": True,
                "errors": ["tool_round_trips_exhausted"],
            }

        async def done_node(state: TurnState) -> dict[str, Any]:
            turn.enter(DONE)
            return {}

        builder = StateGraph(TurnState)
        builder.add_node("awaiting_session", awaiting_session_node)
        builder.add_node("streaming", streaming_node)
        builder.add_node("handling_tools", handling_tools_node)
        builder.add_node("exhausted", exhausted_node)
        builder.add_node("done", done_node)

        builder.add_edge(START, "awaiting_session")
        builder.add_edge("awaiting_session", "streaming")
        builder.add_conditional_edges("streaming", after_streaming, ["handling_tools", "exhausted", "done"])
        builder.add_edge("handling_tools", "streaming")
        builder.add_edge("exhausted", "done")
        builder.add_edge("done", END)

        return builder.compile()


def _skipped(request: ToolInvocationRequest) -> ToolInvocationResult:
    meta = {"tool_call_id": request.id, "tool_name": request.name}
    return ToolInvocationResult(
        id=request.id,
        name=request.name,
        ok=False,
        content=make_payload(text=SKIPPED_TOOL_TEXT, data={}, meta=meta),
        error=normalize_error(error_type="round_trips_exhausted", message=SKIPPED_TOOL_TEXT),
    )
