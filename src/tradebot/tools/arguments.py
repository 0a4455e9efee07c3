"""Forgiving decode of model-supplied tool arguments.

Tool selection and argument filling are model behaviour, not system faults:
decoding never raises. Missing or unusable values fall back to the
parameter's documented default, or to the UNKNOWN sentinel for required
parameters without one.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from .declarations import UNKNOWN, ParameterSpec, ToolDeclaration


def parse_arguments_json(raw: str | None) -> dict[str, Any] | None:
    """Parse streamed JSON arguments; None when they are not a JSON object."""

    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _coerce(spec: ParameterSpec, value: Any) -> Any:
    if spec.type == "string":
        if isinstance(value, (dict, list)):
            return None
        text = str(value).strip()
        return text or None
    if spec.type == "integer":
        if isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
    if spec.type == "number":
        if isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
    if spec.type == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in {"true", "false"}:
            return value.lower() == "true"
        return None
    return value


def _normalize_enum(spec: ParameterSpec, value: Any) -> Any:
    if spec.enum is None or value is None:
        return value
    if value in spec.enum:
        return value
    if isinstance(value, str):
        # "1w" -> "1W"
        for option in spec.enum:
            if option.lower() == value.lower():
                return option
    return None


def decode_arguments(declaration: ToolDeclaration, arguments: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return one value per declared parameter; unknown extra keys are dropped."""

    raw = dict(arguments or {})
    decoded: dict[str, Any] = {}

    for name, spec in declaration.parameters.items():
        value = raw.get(name)
        if value is not None:
            value = _normalize_enum(spec, _coerce(spec, value))

        if value is None:
            if spec.default is not None:
                value = spec.default
            elif name in declaration.required:
                value = UNKNOWN
            else:
                continue

        decoded[name] = value

    return decoded
