"""DeepSeek chat-completions client with buffered and streamed replies."""
from __future__ import annotations

import json
import re
import time
from typing import Any, AsyncIterator

import httpx
from pydantic import ValidationError

from planner.config import Settings, settings
from planner.errors import DecodeError, ProviderError
from planner.models.messages import Message, ToolDefinition, to_wire_messages
from planner.models.schemas import CompletionResponse
from planner.services import logger as log_service

# two consecutive line endings, each CRLF, LF or a lone CR
_EVENT_BOUNDARY = re.compile(rb"(?:\r\n|\r(?!\n)|\n){2}")


class SSEDecoder:
    """Incremental Server-Sent-Events splitter.

    Bytes may arrive cut at any position, including inside a ``data:`` line or
    a multi-byte character; only complete events are released.
    """

    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += chunk
        # a trailing CR may be the first half of a CRLF still in flight
        held = b"\r" if self._buffer.endswith(b"\r") else b""
        parts = _EVENT_BOUNDARY.split(self._buffer[: len(self._buffer) - len(held)])
        self._buffer = parts.pop() + held
        return [p for p in (self._event_data(raw) for raw in parts) if p is not None]

    def flush(self) -> list[str]:
        raw, self._buffer = self._buffer, b""
        data = self._event_data(raw)
        return [data] if data is not None else []

    @staticmethod
    def _event_data(raw: bytes) -> str | None:
        text = raw.decode("utf-8", errors="replace")
        lines: list[str] = []
        for line in text.splitlines():
            if not line.startswith("data:"):
                continue
            value = line[len("data:"):]
            if value.startswith(" "):
                value = value[1:]
            lines.append(value)
        if not lines:
            return None
        return "\n".join(lines)


def delta_fragments(payload: str) -> list[str]:
    """``choices[*].delta.content`` fragments of one streamed event.

    Payloads that are not JSON objects or are malformed yield nothing.
    """
    if not payload.lstrip().startswith("{"):
        return []
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return []

    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list):
        return []

    fragments: list[str] = []
    for choice in choices:
        delta = choice.get("delta") if isinstance(choice, dict) else None
        content = delta.get("content") if isinstance(delta, dict) else None
        if isinstance(content, str) and content:
            fragments.append(content)
    return fragments


class CompletionGateway:
    """Sends a conversation to the completion provider and returns the reply.

    The credential is passed in at construction; use ``from_settings`` to build
    one from the environment.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.deepseek.com",
        model: str = "deepseek-chat",
        timeout: float = 60.0,
        stream_timeout: float = 300.0,
        stream_connect_timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = httpx.Timeout(timeout)
        self.stream_timeout = httpx.Timeout(stream_timeout, connect=stream_connect_timeout)
        self._http_client = http_client

    @classmethod
    def from_settings(
        cls,
        config: Settings | None = None,
        *,
        model: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "CompletionGateway":
        config = config or settings
        return cls(
            config.require_api_key(),
            base_url=config.deepseek_base_url,
            model=model or config.default_model,
            timeout=config.completion_timeout_seconds,
            stream_timeout=config.stream_timeout_seconds,
            stream_connect_timeout=config.stream_connect_timeout_seconds,
            http_client=http_client,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def build_request(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        *,
        stream: bool = False,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": to_wire_messages(messages),
            "stream": stream,
        }
        if tools:
            body["functions"] = [t.to_wire() for t in tools]
        return body

    async def complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        *,
        caller: str = "planner",
    ) -> Message:
        """Buffered completion: returns ``choices[0].message``."""
        body = self.build_request(messages, tools)
        t0 = time.monotonic()

        async def _do_request(client: httpx.AsyncClient) -> httpx.Response:
            return await client.post(
                self.endpoint,
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )

        try:
            if self._http_client is None:
                async with httpx.AsyncClient() as client:
                    response = await _do_request(client)
            else:
                response = await _do_request(self._http_client)
        except httpx.HTTPError as e:
            self._log(caller, t0, error=str(e))
            raise ProviderError(f"Completion request failed: {e}") from e

        if not response.is_success:
            self._log(caller, t0, error=f"HTTP {response.status_code}")
            raise ProviderError(
                f"Completion provider returned HTTP {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            parsed = CompletionResponse.model_validate_json(response.content)
        except ValidationError as e:
            self._log(caller, t0, error="decode")
            raise DecodeError(f"Unexpected completion response: {e}") from e
        if not parsed.choices:
            self._log(caller, t0, error="decode")
            raise DecodeError("Completion response contained no choices")

        self._log(caller, t0)
        return parsed.choices[0].message

    async def stream(
        self,
        messages: list[Message],
        *,
        caller: str = "planner",
    ) -> AsyncIterator[str]:
        """Yield content fragments in arrival order as the provider streams them."""
        body = self.build_request(messages, stream=True)
        t0 = time.monotonic()
        decoder = SSEDecoder()

        async def _consume(client: httpx.AsyncClient) -> AsyncIterator[str]:
            async with client.stream(
                "POST",
                self.endpoint,
                json=body,
                headers=self._headers(),
                timeout=self.stream_timeout,
            ) as response:
                if not response.is_success:
                    error_body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ProviderError(
                        f"Completion provider returned HTTP {response.status_code}: {error_body[:500]}",
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    for payload in decoder.feed(chunk):
                        for fragment in delta_fragments(payload):
                            yield fragment
                for payload in decoder.flush():
                    for fragment in delta_fragments(payload):
                        yield fragment

        try:
            if self._http_client is None:
                async with httpx.AsyncClient() as client:
                    async for fragment in _consume(client):
                        yield fragment
            else:
                async for fragment in _consume(self._http_client):
                    yield fragment
        except ProviderError as e:
            self._log(caller, t0, streamed=True, error=str(e))
            raise
        except httpx.HTTPError as e:
            self._log(caller, t0, streamed=True, error=str(e))
            raise ProviderError(f"Streaming completion failed: {e}") from e

        self._log(caller, t0, streamed=True)

    async def complete_streaming(
        self,
        messages: list[Message],
        *,
        caller: str = "planner",
    ) -> str:
        fragments: list[str] = []
        async for fragment in self.stream(messages, caller=caller):
            fragments.append(fragment)
        return "".join(fragments)

    def _log(
        self,
        caller: str,
        started: float,
        *,
        streamed: bool = False,
        error: str | None = None,
    ) -> None:
        log_service.log_llm_call(
            model=self.model,
            caller=caller,
            duration_ms=int((time.monotonic() - started) * 1000),
            streamed=streamed,
            status="error" if error else "success",
            error=error,
        )


_gateway: CompletionGateway | None = None


def gateway() -> CompletionGateway:
    """Get or create the shared gateway; raises ``ConfigurationError`` without a key."""
    global _gateway
    if _gateway is None:
        _gateway = CompletionGateway.from_settings()
    return _gateway
