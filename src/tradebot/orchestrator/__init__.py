from __future__ import annotations

from .graph_state import AWAITING_SESSION, DONE, FAILED, HANDLING_TOOLS, STREAMING
from .session import ChatSession
from .sink import IncrementalSink
from .streaming import StreamingOrchestrator

__all__ = [
    "AWAITING_SESSION",
    "DONE",
    "FAILED",
    "HANDLING_TOOLS",
    "STREAMING",
    "ChatSession",
    "IncrementalSink",
    "StreamingOrchestrator",
]
