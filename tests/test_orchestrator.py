"""Tests for the planning orchestrator."""
from __future__ import annotations

import json
from typing import Callable

import pytest

from planner.agents.orchestrator import (
    FINAL_ANSWER_MARKER,
    KnowledgeBase,
    PlanningOrchestrator,
    PlanState,
    SearchBudget,
)
from planner.agents.tool_dispatcher import DispatchResult, ToolDispatcher
from planner.errors import DecodeError, ProviderError
from planner.models.events import EventType
from planner.models.messages import SEARCH_WEB_TOOL, Message, Role, ToolCall, ToolName

SIX_QUESTIONS = "\n".join(f"Question {i}?" for i in range(1, 7))
SEARCH_TEXT = "URL: https://docs.example\nContent: useful docs\n\n"


def search_reply(query: str) -> Message:
    return Message(
        role=Role.ASSISTANT,
        tool_call=ToolCall(name="search_web", arguments=json.dumps({"query": query})),
    )


def text_reply(content: str) -> Message:
    return Message(role=Role.ASSISTANT, content=content)


class FakeGateway:
    """Scripted stand-in for CompletionGateway that records every call."""

    def __init__(
        self,
        respond: Callable[[int, list[Message], list | None], Message],
        plan_fragments: list[str] | None = None,
        stream_error: Exception | None = None,
    ):
        self.respond = respond
        self.plan_fragments = plan_fragments or ["## Plan", "\nShip it."]
        self.stream_error = stream_error
        self.calls: list[dict] = []
        self.stream_calls: list[list[Message]] = []

    async def complete(self, messages, tools=None, *, caller="planner"):
        self.calls.append({"messages": list(messages), "tools": tools, "caller": caller})
        return self.respond(len(self.calls), list(messages), tools)

    async def stream(self, messages, *, caller="planner"):
        self.stream_calls.append(list(messages))
        if self.stream_error is not None:
            raise self.stream_error
        for fragment in self.plan_fragments:
            yield fragment


class FakeSearch:
    def __init__(self):
        self.queries: list[str] = []

    async def __call__(self, query: str) -> str:
        self.queries.append(query)
        return SEARCH_TEXT


def make_orchestrator(gateway, search=None, **kwargs) -> PlanningOrchestrator:
    return PlanningOrchestrator(
        gateway,
        ToolDispatcher(search=search or FakeSearch()),
        **kwargs,
    )


CONVERSATION = [
    Message(role=Role.USER, content="Build a todo app"),
    Message(role=Role.ASSISTANT, content=SIX_QUESTIONS),
    Message(role=Role.USER, content="Web app, 100 users, Python backend"),
]


class TestQuestioning:
    @pytest.mark.asyncio
    async def test_single_message_returns_six_questions(self):
        gateway = FakeGateway(lambda n, messages, tools: text_reply(SIX_QUESTIONS))
        search = FakeSearch()
        orchestrator = make_orchestrator(gateway, search)

        outcome = await orchestrator.create_plan([Message(role=Role.USER, content="Build a todo app")])

        assert outcome.text == SIX_QUESTIONS
        assert len(outcome.text.splitlines()) == 6
        assert not outcome.is_error
        assert outcome.state == PlanState.QUESTIONING
        assert outcome.search_count == 0
        assert search.queries == []
        assert len(gateway.calls) == 1
        assert gateway.calls[0]["tools"] is None
        assert gateway.calls[0]["messages"][0].role == Role.SYSTEM
        assert "six clarifying questions" in gateway.calls[0]["messages"][0].content
        assert gateway.calls[0]["messages"][1].content == "Build a todo app"
        assert gateway.stream_calls == []

    @pytest.mark.asyncio
    async def test_questioning_gateway_failure_is_diagnostic(self):
        def respond(n, messages, tools):
            raise ProviderError("Completion provider returned HTTP 500: down", status_code=500)

        outcome = await make_orchestrator(FakeGateway(respond)).create_plan(
            [Message(role=Role.USER, content="Build a todo app")]
        )

        assert outcome.is_error
        assert outcome.text.startswith("Error calling completion API:")
        assert outcome.events[-1].event == EventType.ERROR


class TestResearch:
    @pytest.mark.asyncio
    async def test_multi_message_conversation_enters_research(self):
        gateway = FakeGateway(lambda n, messages, tools: text_reply(f"Done {FINAL_ANSWER_MARKER}"))
        orchestrator = make_orchestrator(gateway)

        outcome = await orchestrator.create_plan(CONVERSATION)

        first = gateway.calls[0]
        assert first["tools"] == [SEARCH_WEB_TOOL]
        assert "six clarifying questions" not in first["messages"][0].content
        assert "search_web" in first["messages"][0].content
        assert [m.content for m in first["messages"][1:]] == [m.content for m in CONVERSATION]
        assert all(call["tools"] == [SEARCH_WEB_TOOL] for call in gateway.calls)
        assert outcome.state == PlanState.DONE
        assert outcome.text == "## Plan\nShip it."

    @pytest.mark.asyncio
    async def test_final_answer_after_three_searches(self):
        def respond(n, messages, tools):
            if n <= 3:
                return search_reply(f"query {n}")
            return text_reply(f"Summary of findings {FINAL_ANSWER_MARKER}")

        gateway = FakeGateway(respond)
        search = FakeSearch()
        orchestrator = make_orchestrator(gateway, search, max_searches=50)

        outcome = await orchestrator.create_plan(CONVERSATION)

        assert outcome.search_count == 3
        assert search.queries == ["query 1", "query 2", "query 3"]
        assert len(gateway.calls) == 4
        assert orchestrator.stop_reason == "final_answer"
        assert outcome.state == PlanState.DONE
        assert not outcome.is_error

        synthesis_messages = gateway.stream_calls[0]
        assert synthesis_messages[0].role == Role.SYSTEM
        assert "technical plan" in synthesis_messages[0].content
        knowledge = synthesis_messages[1].content
        assert "Summary of findings" in knowledge
        assert "Search #3 for 'query 3'" in knowledge

    @pytest.mark.asyncio
    async def test_budget_ends_loop_without_sentinel(self):
        gateway = FakeGateway(lambda n, messages, tools: search_reply(f"q{n}"))
        search = FakeSearch()
        orchestrator = make_orchestrator(gateway, search, max_searches=4)

        outcome = await orchestrator.create_plan(CONVERSATION)

        assert outcome.search_count == 4
        assert len(search.queries) == 4
        assert len(gateway.calls) == 4
        assert orchestrator.budget.count <= orchestrator.budget.max
        assert orchestrator.stop_reason == "search_budget_exhausted"
        assert outcome.text == "## Plan\nShip it."

    @pytest.mark.asyncio
    async def test_dispatch_appends_three_messages_with_exact_replay(self):
        call = ToolCall(name="search_web", arguments='{"query":  "svelte kit"}')

        def respond(n, messages, tools):
            if n == 1:
                return Message(role=Role.ASSISTANT, tool_call=call)
            return text_reply(FINAL_ANSWER_MARKER)

        gateway = FakeGateway(respond)
        await make_orchestrator(gateway).create_plan(CONVERSATION)

        second = gateway.calls[1]["messages"]
        note, replay, function = second[-3:]
        assert note.role == Role.SYSTEM
        assert note.content.startswith("Useful information from search #1 for 'svelte kit'")
        assert replay.role == Role.ASSISTANT
        assert replay.tool_call == call
        assert replay.to_wire() == {"role": "assistant", "function_call": call.model_dump()}
        assert function.role == Role.FUNCTION
        assert function.name == "search_web"
        assert function.content == SEARCH_TEXT

    @pytest.mark.asyncio
    async def test_intermediate_content_is_kept_in_conversation(self):
        def respond(n, messages, tools):
            if n == 1:
                return text_reply("Thinking about the stack")
            return text_reply(f"Ready {FINAL_ANSWER_MARKER}")

        gateway = FakeGateway(respond)
        orchestrator = make_orchestrator(gateway)
        await orchestrator.create_plan(CONVERSATION)

        second = gateway.calls[1]["messages"]
        assert second[-1] == Message(role=Role.ASSISTANT, content="Thinking about the stack")
        assert "Thinking about the stack" in orchestrator.knowledge.text
        assert orchestrator.budget.count == 0

    @pytest.mark.asyncio
    async def test_malformed_tool_arguments_do_not_abort(self):
        def respond(n, messages, tools):
            if n == 1:
                return Message(role=Role.ASSISTANT, tool_call=ToolCall(name="search_web", arguments="{oops"))
            if n == 2:
                return Message(role=Role.ASSISTANT, tool_call=ToolCall(name="search_web", arguments="{}"))
            return text_reply(FINAL_ANSWER_MARKER)

        gateway = FakeGateway(respond)
        search = FakeSearch()
        orchestrator = make_orchestrator(gateway, search)

        outcome = await orchestrator.create_plan(CONVERSATION)

        assert not outcome.is_error
        assert search.queries == []
        assert outcome.search_count == 2
        errors = [e for e in outcome.events if e.event == EventType.TOOL_ERROR]
        assert len(errors) == 2
        third = gateway.calls[2]["messages"]
        assert third[-1].role == Role.FUNCTION
        assert third[-1].content.startswith("Error: missing query")
        assert "could not run" in orchestrator.knowledge.text

    @pytest.mark.asyncio
    async def test_unknown_tool_is_treated_as_text(self):
        def respond(n, messages, tools):
            if n == 1:
                return Message(
                    role=Role.ASSISTANT,
                    content="Let me check",
                    tool_call=ToolCall(name="open_browser", arguments="{}"),
                )
            return text_reply(FINAL_ANSWER_MARKER)

        gateway = FakeGateway(respond)
        orchestrator = make_orchestrator(gateway)
        outcome = await orchestrator.create_plan(CONVERSATION)

        assert outcome.search_count == 0
        assert gateway.calls[1]["messages"][-1] == Message(role=Role.ASSISTANT, content="Let me check")

    @pytest.mark.asyncio
    async def test_turn_limit_forces_synthesis(self):
        gateway = FakeGateway(lambda n, messages, tools: text_reply("still thinking"))
        orchestrator = make_orchestrator(gateway, max_turns=3)

        outcome = await orchestrator.create_plan(CONVERSATION)

        assert len(gateway.calls) == 3
        assert orchestrator.stop_reason == "turn_limit_reached"
        assert outcome.state == PlanState.DONE

    @pytest.mark.asyncio
    async def test_research_gateway_failure_aborts_run(self):
        def respond(n, messages, tools):
            if n == 1:
                return search_reply("first")
            raise DecodeError("Completion response contained no choices")

        gateway = FakeGateway(respond)
        outcome = await make_orchestrator(gateway).create_plan(CONVERSATION)

        assert outcome.is_error
        assert outcome.text == "Error parsing completion response: Completion response contained no choices"
        assert outcome.state == PlanState.RESEARCHING
        assert gateway.stream_calls == []


class TestSynthesis:
    @pytest.mark.asyncio
    async def test_synthesis_streams_progress_events(self):
        gateway = FakeGateway(
            lambda n, messages, tools: text_reply(FINAL_ANSWER_MARKER),
            plan_fragments=["a", "b", "c"],
        )
        outcome = await make_orchestrator(gateway).create_plan(CONVERSATION)

        chunks = [e.data["chunk"] for e in outcome.events if e.event == EventType.SYNTHESIS_PROGRESS]
        assert chunks == ["a", "b", "c"]
        assert outcome.events[-1].event == EventType.PLAN_COMPLETE
        assert outcome.events[-1].data["plan"] == "abc"

    @pytest.mark.asyncio
    async def test_buffered_synthesis(self):
        def respond(n, messages, tools):
            if tools is None:
                return text_reply("Buffered plan")
            return text_reply(FINAL_ANSWER_MARKER)

        gateway = FakeGateway(respond)
        outcome = await make_orchestrator(gateway, stream_synthesis=False).create_plan(CONVERSATION)

        assert outcome.text == "Buffered plan"
        assert gateway.calls[-1]["caller"] == "synthesis"
        assert gateway.stream_calls == []

    @pytest.mark.asyncio
    async def test_synthesis_failure_is_diagnostic(self):
        gateway = FakeGateway(
            lambda n, messages, tools: text_reply(FINAL_ANSWER_MARKER),
            stream_error=ProviderError("Streaming completion failed: reset"),
        )
        outcome = await make_orchestrator(gateway).create_plan(CONVERSATION)

        assert outcome.is_error
        assert outcome.text == "Error calling completion API: Streaming completion failed: reset"
        assert outcome.state == PlanState.SYNTHESIZING


class TestBookkeeping:
    def test_search_budget_refuses_to_exceed_max(self):
        budget = SearchBudget(max=2)
        assert budget.consume() == 1
        assert budget.consume() == 2
        assert budget.exhausted
        with pytest.raises(RuntimeError):
            budget.consume()
        assert budget.count == 2

    def test_knowledge_base_appends_in_order(self):
        knowledge = KnowledgeBase()
        knowledge.append("first")
        knowledge.append("")
        knowledge.append("second")
        assert knowledge.text == "first\n\nsecond"
        assert len(knowledge) == len("first\n\nsecond")

    def test_knowledge_entry_is_log_line_plus_excerpt(self):
        orchestrator = make_orchestrator(FakeGateway(lambda n, messages, tools: text_reply("unused")))
        orchestrator.knowledge_excerpt_chars = 5
        result = DispatchResult(tool=ToolName.SEARCH_WEB, query="fastapi sse", result_text="abcdefghij")
        assert orchestrator._knowledge_entry(2, result) == "Search #2 for 'fastapi sse':\nabcde"

        orchestrator.knowledge_excerpt_chars = 0
        assert orchestrator._knowledge_entry(2, result) == "Search #2 for 'fastapi sse'"

    @pytest.mark.asyncio
    async def test_empty_conversation_is_error(self):
        gateway = FakeGateway(lambda n, messages, tools: text_reply("unused"))
        outcome = await make_orchestrator(gateway).create_plan([])
        assert outcome.is_error
        assert gateway.calls == []
