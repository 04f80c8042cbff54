from __future__ import annotations

from pydantic import BaseModel

from planner.models.messages import Message


# --- Requests ---


class ChatRequest(BaseModel):
    messages: list[Message]

    def stripped_messages(self) -> list[Message]:
        """Inbound messages reduced to role and content."""
        return [Message(role=m.role, content=m.content) for m in self.messages]


# --- Responses ---


class ContentResponse(BaseModel):
    content: str


class ErrorResponse(BaseModel):
    error: str


class CompletionChoice(BaseModel):
    message: Message


class CompletionResponse(BaseModel):
    """Buffered completion body: ``{"choices": [{"message": {...}}]}``."""

    choices: list[CompletionChoice]
