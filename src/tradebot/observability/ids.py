from __future__ import annotations

import secrets


def new_trace_id() -> str:
    return secrets.token_hex(16)


def new_session_id() -> str:
    return secrets.token_hex(12)


def new_tool_call_id() -> str:
    """Correlation id for a tool call the provider streamed without one."""

    return f"call_{secrets.token_hex(8)}"
