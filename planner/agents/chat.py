from __future__ import annotations

from typing import AsyncIterator

from planner.errors import DecodeError
from planner.llm_client import CompletionGateway, gateway as default_gateway
from planner.models.messages import Message


async def chat(messages: list[Message], gateway: CompletionGateway | None = None) -> str:
    """Plain multi-turn completion without tools.

    Gateway failures propagate as ``ProviderError`` / ``DecodeError``; a reply
    without content is a ``DecodeError`` too.
    """
    active = gateway or default_gateway()
    reply = await active.complete(messages, caller="chat")
    if not reply.content:
        raise DecodeError("Completion response contained no content")
    return reply.content


async def chat_stream(
    messages: list[Message], gateway: CompletionGateway | None = None
) -> AsyncIterator[str]:
    active = gateway or default_gateway()
    async for fragment in active.stream(messages, caller="chat"):
        yield fragment
