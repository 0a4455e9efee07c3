from __future__ import annotations

from typing import Any, Iterable

from .declarations import ToolDeclaration


def to_openai_spec(declaration: ToolDeclaration) -> dict[str, Any]:
    """Render a declaration in the OpenAI-compatible tool format.

    {
      "type": "function",
      "function": {"name": ..., "description": ..., "parameters": {...JSON Schema...}}
    }
    """

    properties: dict[str, Any] = {}
    for name, spec in declaration.parameters.items():
        prop: dict[str, Any] = {"type": spec.type, "description": spec.description}
        if spec.enum is not None:
            prop["enum"] = list(spec.enum)
        properties[name] = prop

    parameters: dict[str, Any] = {"type": "object", "properties": properties}
    # Keep declaration order so the rendered schema is stable.
    required = [name for name in declaration.parameters if name in declaration.required]
    if required:
        parameters["required"] = required

    return {
        "type": "function",
        "function": {
            "name": declaration.name,
            "description": declaration.description,
            "parameters": parameters,
        },
    }


def get_openai_tool_specs(declarations: Iterable[ToolDeclaration]) -> list[dict[str, Any]]:
    return [to_openai_spec(d) for d in declarations]
