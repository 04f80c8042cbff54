"""Conversation data contract shared with the completion provider.

Fields that are absent in the domain sense are dropped from the wire encoding
instead of being sent as ``null``.
"""
from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    FUNCTION = "function"


class ToolCall(BaseModel):
    """A function call emitted by the model. ``arguments`` is unparsed JSON text."""

    name: str
    arguments: str = ""


class Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: Role
    content: str | None = None
    name: str | None = None
    tool_call: ToolCall | None = Field(default=None, alias="function_call")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)


class ToolDefinition(BaseModel):
    name: str
    description: str
    parameters: dict[str, Any]

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ToolName(str, Enum):
    """Tools the planner knows how to execute."""

    SEARCH_WEB = "search_web"

    @classmethod
    def parse(cls, name: str) -> "ToolName | None":
        try:
            return cls(name)
        except ValueError:
            return None


SEARCH_WEB_TOOL = ToolDefinition(
    name=ToolName.SEARCH_WEB.value,
    description="Search the web using DuckDuckGo to gather information for technical planning",
    parameters={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The search query to use for DuckDuckGo",
            }
        },
        "required": ["query"],
    },
)


def to_wire_messages(messages: list[Message]) -> list[dict[str, Any]]:
    return [m.to_wire() for m in messages]
