from __future__ import annotations

import json
from typing import Any, Sequence

from tradebot.core.types import ToolInvocationRequest, ToolInvocationResult

from .tool_result_codec import dumps_payload


def tool_message_from_result(r: ToolInvocationResult) -> dict[str, Any]:
    """Build an OpenAI-compatible tool message; content is a JSON string."""

    content = dict(r.content)
    if r.error is not None:
        content["error"] = r.error
    return {
        "role": "tool",
        "tool_call_id": r.id,
        "name": r.name,
        "content": dumps_payload(content),
    }


def assistant_message(text: str, requests: Sequence[ToolInvocationRequest] = ()) -> dict[str, Any]:
    """Assistant turn as stored in history: text plus any tool calls it issued."""

    msg: dict[str, Any] = {"role": "assistant", "content": text or None}
    if requests:
        msg["tool_calls"] = [
            {
                "id": req.id,
                "type": "function",
                "function": {
                    "name": req.name,
                    "arguments": json.dumps(req.arguments, ensure_ascii=False),
                },
            }
            for req in requests
        ]
    elif not text:
        msg["content"] = ""
    return msg
