from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    PHASE_STARTED = "phase_started"
    QUESTIONS_READY = "questions_ready"
    SEARCH_STARTED = "search_started"
    SEARCH_COMPLETED = "search_completed"
    TOOL_ERROR = "tool_error"
    KNOWLEDGE_UPDATED = "knowledge_updated"
    SYNTHESIS_STARTED = "synthesis_started"
    SYNTHESIS_PROGRESS = "synthesis_progress"
    PLAN_COMPLETE = "plan_complete"
    ERROR = "error"


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def to_sse(self) -> dict[str, str]:
        """Shape expected by ``sse_starlette.EventSourceResponse``."""
        return {"event": self.event.value, "data": json.dumps(self.data)}
