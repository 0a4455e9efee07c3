from __future__ import annotations

import json
from typing import Any

# Model-facing text is truncated past this many characters.
MAX_TEXT_CHARS = 2000


def _is_json_primitive(obj: Any) -> bool:
    return obj is None or isinstance(obj, (str, int, float, bool))


def _is_json_friendly(obj: Any) -> bool:
    if _is_json_primitive(obj):
        return True
    if isinstance(obj, (list, tuple)):
        return all(_is_json_friendly(v) for v in obj)
    if isinstance(obj, dict):
        return all(isinstance(k, str) and _is_json_friendly(v) for k, v in obj.items())
    return False


def make_payload(*, text: str, data: Any, meta: dict[str, Any]) -> dict[str, Any]:
    """Create the canonical ToolInvocationResult.content payload.

    - `text`: the human/model-readable summary the model reasons over.
    - `data`: structured output (JSON-friendly).
    - `meta`: correlation and routing info (tool_call_id, tool_name).
    """

    return {
        "text": str(text or ""),
        "data": data if _is_json_friendly(data) else {"value": repr(data)},
        "meta": meta if _is_json_friendly(meta) else {"value": repr(meta)},
    }


def payload_from_output(output: Any, *, meta: dict[str, Any]) -> dict[str, Any]:
    if isinstance(output, str):
        return make_payload(text=output, data={"text": output}, meta=meta)

    if isinstance(output, dict) and isinstance(output.get("text"), str):
        # Handlers may supply their own summary next to structured data.
        data = {k: v for k, v in output.items() if k != "text"}
        return make_payload(text=output["text"], data=data, meta=meta)

    if _is_json_friendly(output):
        text = json.dumps(output, ensure_ascii=False)
        if len(text) > MAX_TEXT_CHARS:
            text = text[:MAX_TEXT_CHARS] + "..."
        return make_payload(text=text, data=output, meta=meta)

    return make_payload(text=repr(output), data={"value": repr(output)}, meta=meta)


def normalize_error(*, error_type: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "type": str(error_type),
        "message": str(message),
        "details": dict(details or {}),
    }


def dumps_payload(payload: dict[str, Any]) -> str:
    """Serialize a payload for tool message content (always JSON, never a repr)."""

    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
