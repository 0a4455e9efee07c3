"""Per-turn observability context.

Values live in contextvars so they follow the turn across awaits and are
attached to every log record by the JSON formatter.
"""

from __future__ import annotations

from contextvars import ContextVar


_trace_id: ContextVar[str | None] = ContextVar("trace_id", default=None)
_session_id: ContextVar[str | None] = ContextVar("session_id", default=None)
_turn_id: ContextVar[int | None] = ContextVar("turn_id", default=None)
_state: ContextVar[str | None] = ContextVar("state", default=None)
_errors: ContextVar[list[str] | None] = ContextVar("errors", default=None)


def bind_context(*, trace_id: str, session_id: str | None, turn_id: int) -> None:
    _trace_id.set(trace_id)
    _session_id.set(session_id)
    _turn_id.set(turn_id)
    _state.set(None)
    _errors.set([])


def bind_session(session_id: str) -> None:
    """Attach the session id once the session exists (it is created lazily mid-turn)."""

    _session_id.set(session_id)


def set_state(state: str) -> None:
    _state.set(state)


def current_state() -> str | None:
    return _state.get()


def add_error(message: str) -> None:
    errs = list(_errors.get() or [])
    errs.append(message)
    _errors.set(errs)


def snapshot() -> dict[str, object]:
    """Return the current context as log fields; unset values are omitted."""

    out: dict[str, object] = {}
    for key, var in (
        ("trace_id", _trace_id),
        ("session_id", _session_id),
        ("turn_id", _turn_id),
        ("state", _state),
    ):
        value = var.get()
        if value is not None:
            out[key] = value
    out["errors"] = list(_errors.get() or [])
    return out
