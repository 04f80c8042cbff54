from __future__ import annotations

import json as _json

from fastapi import APIRouter
from sse_starlette.sse import EventSourceResponse

from planner.agents.chat import chat as run_chat, chat_stream
from planner.agents.orchestrator import PlanningOrchestrator
from planner.errors import DecodeError, ProviderError
from planner.models.schemas import ChatRequest, ContentResponse, ErrorResponse
from planner.services import logger as log_service
from planner.services import streaming

router = APIRouter(prefix="/planner", tags=["planner"])


@router.post("/chat", response_model=ContentResponse | ErrorResponse)
async def chat(request: ChatRequest):
    """Plain multi-turn chat completion."""
    messages = request.stripped_messages()
    log_service.log_event(
        event_type="chat_request",
        message="Chat request received",
        messages=len(messages),
    )
    try:
        content = await run_chat(messages)
    except DecodeError as e:
        return ErrorResponse(error=f"Error parsing completion response: {e}")
    except ProviderError as e:
        return ErrorResponse(error=f"Error calling completion API: {e}")
    return ContentResponse(content=content)


@router.post("/chat/stream")
async def stream_chat(request: ChatRequest):
    """SSE endpoint relaying completion fragments as they arrive."""
    messages = request.stripped_messages()

    async def event_generator():
        try:
            async for fragment in chat_stream(messages):
                yield {"event": "chunk", "data": _json.dumps({"chunk": fragment})}
        except ProviderError as e:
            yield streaming.error(f"Error calling completion API: {e}").to_sse()
            return
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in chat stream",
                error=str(e),
            )
            yield streaming.error("Chat stream failed unexpectedly.").to_sse()
            return
        yield {"event": "done", "data": _json.dumps({})}

    return EventSourceResponse(event_generator())


@router.post("/create_plan", response_model=ContentResponse | ErrorResponse)
async def create_plan(request: ChatRequest):
    """Ask clarifying questions or, once answered, research and write the plan."""
    messages = request.stripped_messages()
    log_service.log_event(
        event_type="plan_requested",
        message="Plan request received",
        messages=len(messages),
    )
    outcome = await PlanningOrchestrator().create_plan(messages)
    if outcome.is_error:
        return ErrorResponse(error=outcome.text)
    return ContentResponse(content=outcome.text)


@router.post("/create_plan/stream")
async def stream_plan(request: ChatRequest):
    """SSE endpoint that streams planning progress events."""
    messages = request.stripped_messages()

    async def event_generator():
        orchestrator = PlanningOrchestrator()
        try:
            async for event in orchestrator.run(messages):
                yield event.to_sse()
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in planning stream",
                error=str(e),
            )
            yield streaming.error("Planning stream failed unexpectedly.").to_sse()

    return EventSourceResponse(event_generator())
