from __future__ import annotations

from .client import ChatModel, FakeChatModel, OpenAIChatModel
from .tool_call_accumulator import InvalidToolCall, ToolCallAccumulator

__all__ = ["ChatModel", "FakeChatModel", "InvalidToolCall", "OpenAIChatModel", "ToolCallAccumulator"]
