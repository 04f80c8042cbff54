from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncGenerator

from loguru import logger

from planner.agents.tool_dispatcher import DispatchResult, ToolDispatcher, replay_messages
from planner.config import settings
from planner.errors import DecodeError, ProviderError, ToolDispatchError
from planner.llm_client import CompletionGateway, gateway as default_gateway
from planner.models.events import SSEEvent
from planner.models.messages import SEARCH_WEB_TOOL, Message, Role
from planner.services import logger as log_service
from planner.services import streaming
from planner.services.prompt_store import render_prompt
from planner.tools.web_utils import preview

FINAL_ANSWER_MARKER = "<<FINAL_ANSWER>>"


class PlanState(str, Enum):
    IDLE = "idle"
    QUESTIONING = "questioning"
    RESEARCHING = "researching"
    SYNTHESIZING = "synthesizing"
    DONE = "done"


@dataclass
class SearchBudget:
    max: int
    count: int = 0

    @property
    def exhausted(self) -> bool:
        return self.count >= self.max

    def consume(self) -> int:
        if self.exhausted:
            raise RuntimeError(f"Search budget of {self.max} already spent")
        self.count += 1
        return self.count


class KnowledgeBase:
    """Append-only research notes for one planning run."""

    def __init__(self) -> None:
        self._entries: list[str] = []

    def append(self, text: str) -> None:
        if text:
            self._entries.append(text)

    @property
    def text(self) -> str:
        return "\n\n".join(self._entries)

    def __len__(self) -> int:
        return len(self.text)


@dataclass
class PlanOutcome:
    text: str
    is_error: bool = False
    state: PlanState = PlanState.DONE
    search_count: int = 0
    events: list[SSEEvent] = field(default_factory=list)


class PlanningOrchestrator:
    """Drives the question, research and synthesis phases of one planning request.

    Flow:
      1. A single inbound message gets six clarifying questions back, nothing else.
      2. A longer conversation enters research: the model calls ``search_web``
         until it emits the final-answer marker or the search budget runs out.
      3. The knowledge base collected during research is turned into a plan.

    ``run`` yields progress events; ``create_plan`` collects them into a
    ``PlanOutcome``. Completion failures end the run with a diagnostic text,
    tool failures are written into the conversation and the run goes on.
    """

    def __init__(
        self,
        gateway: CompletionGateway | None = None,
        dispatcher: ToolDispatcher | None = None,
        *,
        max_searches: int | None = None,
        max_turns: int | None = None,
        stream_synthesis: bool | None = None,
    ):
        self.gateway = gateway
        self.dispatcher = dispatcher or ToolDispatcher()
        self.max_searches = max(
            int(max_searches if max_searches is not None else settings.max_searches), 0
        )
        self.max_turns = max(
            int(max_turns if max_turns is not None else settings.research_max_turns), 1
        )
        self.stream_synthesis = (
            settings.stream_synthesis if stream_synthesis is None else stream_synthesis
        )
        self.knowledge_excerpt_chars = max(int(settings.knowledge_excerpt_chars), 0)
        self._reset()

    def _reset(self) -> None:
        self.state = PlanState.IDLE
        self.budget = SearchBudget(max=self.max_searches)
        self.knowledge = KnowledgeBase()
        self.conversation: list[Message] = []
        self.result: str = ""
        self.stop_reason = ""
        self.failed = False

    def _transition(self, state: PlanState, **data) -> SSEEvent:
        log_service.log_planner_step(
            state=state.value,
            status="entered",
            data={"from": self.state.value, "search_count": self.budget.count, **data},
        )
        self.state = state
        return streaming.phase_started(state.value, **data)

    def _fail(self, message: str) -> SSEEvent:
        logger.error(f"Planning run failed in {self.state.value}: {message}")
        self.failed = True
        self.result = message
        return streaming.error(message, state=self.state.value)

    @staticmethod
    def _describe_gateway_error(e: ProviderError | DecodeError) -> str:
        if isinstance(e, DecodeError):
            return f"Error parsing completion response: {e}"
        return f"Error calling completion API: {e}"

    async def run(self, messages: list[Message]) -> AsyncGenerator[SSEEvent, None]:
        """Run one planning request, yielding progress events."""
        self._reset()
        started = time.monotonic()
        gateway = self.gateway or default_gateway()
        inbound = list(messages)

        if not inbound:
            yield self._fail("Error: no messages provided")
            return

        if len(inbound) == 1:
            async for event in self._ask_questions(gateway, inbound[0]):
                yield event
            return

        async for event in self._research(gateway, inbound):
            yield event
        if self.failed:
            return

        async for event in self._synthesize(gateway):
            yield event
        if self.failed:
            return

        yield streaming.plan_complete(
            self.result,
            self.budget.count,
            runtime_ms=int((time.monotonic() - started) * 1000),
        )

    async def create_plan(self, messages: list[Message]) -> PlanOutcome:
        """Run to completion and return the final text (or the diagnostic)."""
        events: list[SSEEvent] = []
        async for event in self.run(messages):
            events.append(event)
        return PlanOutcome(
            text=self.result,
            is_error=self.failed,
            state=self.state,
            search_count=self.budget.count,
            events=events,
        )

    async def _ask_questions(
        self, gateway: CompletionGateway, goal: Message
    ) -> AsyncGenerator[SSEEvent, None]:
        yield self._transition(PlanState.QUESTIONING)
        self.conversation = [
            Message.system(render_prompt("questioning.system_prompt")),
            Message(role=goal.role, content=goal.content),
        ]
        try:
            reply = await gateway.complete(self.conversation, caller="questioning")
        except (ProviderError, DecodeError) as e:
            yield self._fail(self._describe_gateway_error(e))
            return

        if not reply.content:
            yield self._fail("Error: No content in response")
            return

        self.result = reply.content
        yield streaming.questions_ready(reply.content)

    async def _research(
        self, gateway: CompletionGateway, inbound: list[Message]
    ) -> AsyncGenerator[SSEEvent, None]:
        yield self._transition(PlanState.RESEARCHING, max_searches=self.budget.max)
        self.conversation = [
            Message.system(
                render_prompt(
                    "research.system_prompt",
                    max_searches=self.budget.max,
                    marker=FINAL_ANSWER_MARKER,
                )
            ),
            *(Message(role=m.role, content=m.content) for m in inbound),
        ]

        self.stop_reason = "search_budget_exhausted"
        turns = 0
        while not self.budget.exhausted:
            if turns >= self.max_turns:
                self.stop_reason = "turn_limit_reached"
                break
            turns += 1

            try:
                reply = await gateway.complete(
                    self.conversation, [SEARCH_WEB_TOOL], caller="research"
                )
            except (ProviderError, DecodeError) as e:
                yield self._fail(self._describe_gateway_error(e))
                return

            if self.dispatcher.recognize(reply.tool_call) is not None:
                async for event in self._dispatch(reply):
                    yield event
                continue

            if reply.tool_call is not None:
                logger.warning(f"Model called unsupported tool {reply.tool_call.name!r}; treating reply as text")

            content = reply.content or ""
            self.knowledge.append(content)
            reached_final = FINAL_ANSWER_MARKER in content
            if content:
                yield streaming.knowledge_updated(len(self.knowledge), final=reached_final)
            if reached_final:
                self.stop_reason = "final_answer"
                break
            self.conversation.append(Message(role=Role.ASSISTANT, content=content))

        yield self._transition(
            PlanState.SYNTHESIZING,
            reason=self.stop_reason,
            search_count=self.budget.count,
        )

    async def _dispatch(self, reply: Message) -> AsyncGenerator[SSEEvent, None]:
        tool_call = reply.tool_call
        search_number = self.budget.consume()
        yield streaming.search_started(search_number, tool_call.arguments)

        try:
            result = await self.dispatcher.dispatch(tool_call, search_number)
        except ToolDispatchError as e:
            self.conversation.extend(replay_messages(tool_call, f"Error: {e}"))
            self.knowledge.append(f"Search #{search_number} could not run: {e}")
            yield streaming.tool_error(search_number, str(e), tool=tool_call.name)
            return

        if result is None:
            return
        self.conversation.extend(result.messages)
        self.knowledge.append(self._knowledge_entry(search_number, result))
        yield streaming.search_completed(
            search_number, result.query, preview(result.result_text)
        )
        yield streaming.knowledge_updated(len(self.knowledge))

    def _knowledge_entry(self, search_number: int, result: DispatchResult) -> str:
        """The short log line for one search, followed by up to
        ``knowledge_excerpt_chars`` characters of its result text.

        With the excerpt length at zero only the log line is kept.
        """
        line = f"Search #{search_number} for '{result.query}'"
        if self.knowledge_excerpt_chars <= 0:
            return line
        excerpt = result.result_text[: self.knowledge_excerpt_chars]
        return f"{line}:\n{excerpt}"

    async def _synthesize(
        self, gateway: CompletionGateway
    ) -> AsyncGenerator[SSEEvent, None]:
        yield streaming.synthesis_started(self.budget.count, len(self.knowledge), self.stop_reason)
        self.conversation = [
            Message.system(render_prompt("synthesis.system_prompt")),
            Message.user(render_prompt("synthesis.user_prompt", knowledge=self.knowledge.text)),
        ]

        try:
            if self.stream_synthesis:
                fragments: list[str] = []
                async for fragment in gateway.stream(self.conversation, caller="synthesis"):
                    fragments.append(fragment)
                    yield streaming.synthesis_progress(fragment)
                plan = "".join(fragments)
            else:
                reply = await gateway.complete(self.conversation, caller="synthesis")
                plan = reply.content or ""
        except (ProviderError, DecodeError) as e:
            yield self._fail(self._describe_gateway_error(e))
            return

        if not plan:
            yield self._fail("Error: No valid response from completion API")
            return

        self.result = plan
        yield self._transition(PlanState.DONE, search_count=self.budget.count)
