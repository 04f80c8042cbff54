from __future__ import annotations

from typing import Any

from planner.models.events import EventType, SSEEvent


def phase_started(state: str, **kwargs: Any) -> SSEEvent:
    return SSEEvent(event=EventType.PHASE_STARTED, data={"state": state, **kwargs})


def questions_ready(questions: str) -> SSEEvent:
    return SSEEvent(
        event=EventType.QUESTIONS_READY,
        data={"questions": questions, "lines": [q for q in questions.splitlines() if q.strip()]},
    )


def search_started(search_number: int, arguments: str) -> SSEEvent:
    return SSEEvent(
        event=EventType.SEARCH_STARTED,
        data={"search_number": search_number, "arguments": arguments},
    )


def search_completed(search_number: int, query: str, content_preview: str) -> SSEEvent:
    return SSEEvent(
        event=EventType.SEARCH_COMPLETED,
        data={
            "search_number": search_number,
            "query": query,
            "content_preview": content_preview,
        },
    )


def tool_error(search_number: int, message: str, tool: str | None = None) -> SSEEvent:
    data: dict[str, Any] = {"search_number": search_number, "message": message}
    if tool:
        data["tool"] = tool
    return SSEEvent(event=EventType.TOOL_ERROR, data=data)


def knowledge_updated(chars: int, final: bool = False) -> SSEEvent:
    return SSEEvent(event=EventType.KNOWLEDGE_UPDATED, data={"chars": chars, "final": final})


def synthesis_started(search_count: int, knowledge_chars: int, reason: str) -> SSEEvent:
    return SSEEvent(
        event=EventType.SYNTHESIS_STARTED,
        data={
            "search_count": search_count,
            "knowledge_chars": knowledge_chars,
            "reason": reason,
        },
    )


def synthesis_progress(chunk: str) -> SSEEvent:
    return SSEEvent(event=EventType.SYNTHESIS_PROGRESS, data={"chunk": chunk})


def plan_complete(
    plan: str,
    search_count: int,
    runtime_ms: int | None = None,
) -> SSEEvent:
    data: dict[str, Any] = {"plan": plan, "search_count": search_count}
    if runtime_ms is not None:
        data["runtime_ms"] = runtime_ms
    return SSEEvent(event=EventType.PLAN_COMPLETE, data=data)


def error(message: str, state: str | None = None) -> SSEEvent:
    data: dict[str, Any] = {"message": message}
    if state:
        data["state"] = state
    return SSEEvent(event=EventType.ERROR, data=data)
