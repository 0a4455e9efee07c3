from __future__ import annotations

import operator
from typing import Annotated
from typing_extensions import TypedDict

from tradebot.core.types import Citation, ToolInvocationRequest

AWAITING_SESSION = "AWAITING_SESSION"
STREAMING = "STREAMING"
HANDLING_TOOLS = "HANDLING_TOOLS"
DONE = "DONE"
FAILED = "FAILED"


class TurnState(TypedDict, total=False):
    # Input
    user_text: str

    # Accumulated across every exchange of the turn
    text_parts: Annotated[list[str], operator.add]
    sources: Annotated[list[Citation], operator.add]
    errors: Annotated[list[str], operator.add]

    # Tool batch awaiting HANDLING_TOOLS (empty once resolved)
    pending: list[ToolInvocationRequest]
    round_trips: int
    truncated: bool
