from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Awaitable, Callable, assert_never

from loguru import logger

from planner.errors import MalformedToolArguments, MissingRequiredArgument
from planner.models.messages import Message, Role, ToolCall, ToolName
from planner.tools import duckduckgo_search

SearchFn = Callable[[str], Awaitable[str]]


@dataclass
class DispatchResult:
    """Outcome of one executed tool call and the messages it adds to the conversation."""

    tool: ToolName
    query: str
    result_text: str
    messages: list[Message] = field(default_factory=list)


def replay_messages(tool_call: ToolCall, function_content: str) -> list[Message]:
    """Assistant replay of ``tool_call`` followed by the function result."""
    return [
        Message(role=Role.ASSISTANT, tool_call=tool_call.model_copy()),
        Message(role=Role.FUNCTION, name=tool_call.name, content=function_content),
    ]


def parse_arguments(tool_call: ToolCall) -> dict:
    try:
        args = json.loads(tool_call.arguments)
    except json.JSONDecodeError as e:
        raise MalformedToolArguments(f"Error parsing function arguments: {e}") from e
    if not isinstance(args, dict):
        raise MalformedToolArguments(
            f"Error parsing function arguments: expected a JSON object, got {type(args).__name__}"
        )
    return args


class ToolDispatcher:
    """Executes tool calls requested by the model."""

    def __init__(self, search: SearchFn | None = None):
        self._search = search or duckduckgo_search.search

    @staticmethod
    def recognize(tool_call: ToolCall | None) -> ToolName | None:
        if tool_call is None:
            return None
        return ToolName.parse(tool_call.name)

    async def dispatch(self, tool_call: ToolCall, search_number: int) -> DispatchResult | None:
        """Run ``tool_call``; returns None for tools the planner does not provide.

        Raises ``MalformedToolArguments`` or ``MissingRequiredArgument`` for a bad payload.
        """
        tool = self.recognize(tool_call)
        if tool is None:
            logger.warning(f"Ignoring call to unknown tool {tool_call.name!r}")
            return None
        if tool is ToolName.SEARCH_WEB:
            return await self._search_web(tool_call, search_number)
        assert_never(tool)

    async def _search_web(self, tool_call: ToolCall, search_number: int) -> DispatchResult:
        args = parse_arguments(tool_call)
        query = args.get("query")
        if not isinstance(query, str):
            raise MissingRequiredArgument("query", tool_call.name)

        logger.info(f"Performing search #{search_number}: {query}")
        try:
            result_text = await self._search(query)
        except Exception as e:
            result_text = f"Search error: {e}"

        note = Message(
            role=Role.SYSTEM,
            content=f"Useful information from search #{search_number} for '{query}':\n{result_text}",
        )
        return DispatchResult(
            tool=ToolName.SEARCH_WEB,
            query=query,
            result_text=result_text,
            messages=[note, *replay_messages(tool_call, result_text)],
        )
