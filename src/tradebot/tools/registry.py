from __future__ import annotations

import re

from tradebot.core.errors import ToolRegistrationError

from .declarations import JSON_TYPES, STOCK_CHART, STOCK_PRICE, ToolDeclaration

_TOOL_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class ToolRegistry:
    """Declarations known to the model.

    The registry is frozen the first time it is described to a model; tools
    registered afterwards would be invisible to an already-open session.
    """

    def __init__(self) -> None:
        self._declarations: dict[str, ToolDeclaration] = {}
        self._frozen = False

    def register(self, declaration: ToolDeclaration) -> None:
        name = declaration.name
        if self._frozen:
            raise ToolRegistrationError(f"registry is frozen; cannot register {name!r}")
        if not isinstance(name, str) or not _TOOL_NAME_RE.fullmatch(name):
            raise ToolRegistrationError(f"tool name is not OpenAI-compatible: {name!r}")
        if name in self._declarations:
            raise ToolRegistrationError(f"tool already registered: {name!r}")

        missing = sorted(declaration.required - set(declaration.parameters))
        if missing:
            raise ToolRegistrationError(f"{name}: required parameters not in schema: {missing}")

        for param, spec in declaration.parameters.items():
            if spec.type not in JSON_TYPES:
                raise ToolRegistrationError(f"{name}.{param}: unsupported type {spec.type!r}")
            if spec.enum is not None and spec.default is not None and spec.default not in spec.enum:
                raise ToolRegistrationError(f"{name}.{param}: default {spec.default!r} not in enum")

        self._declarations[name] = declaration

    def get(self, name: str) -> ToolDeclaration | None:
        return self._declarations.get(name)

    def names(self) -> list[str]:
        return list(self._declarations)

    def describe_all(self) -> tuple[ToolDeclaration, ...]:
        self._frozen = True
        return tuple(self._declarations.values())

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, name: object) -> bool:
        return name in self._declarations

    def __len__(self) -> int:
        return len(self._declarations)


def build_default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(STOCK_CHART)
    registry.register(STOCK_PRICE)
    return registry
