"""Locally executed tools the model may call by name."""

from __future__ import annotations

from .declarations import STOCK_CHART, STOCK_PRICE, UNKNOWN, ParameterSpec, ToolDeclaration
from .executor import ToolExecutor, ToolRejected, build_default_executor
from .registry import ToolRegistry, build_default_registry

__all__ = [
    "STOCK_CHART",
    "STOCK_PRICE",
    "UNKNOWN",
    "ParameterSpec",
    "ToolDeclaration",
    "ToolExecutor",
    "ToolRegistry",
    "ToolRejected",
    "build_default_executor",
    "build_default_registry",
]
