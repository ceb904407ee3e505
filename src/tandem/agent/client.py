"""OpenAI-compatible chat client.

Talks to any ``/chat/completions`` endpoint over httpx. Requests are
throttled by one process-wide ``Throttle`` (so a tree of agents shares a
single concurrency budget) and retried on transient failures.

Messages are mapped both ways:

- assistant messages carry ``tool_calls`` with JSON-encoded arguments
- tool messages carry ``tool_call_id``
- ``reasoning_content`` (returned by reasoning models on several
  providers) becomes ``ModelResponse.reasoning``

Examples:
    >>> client = OpenAIChatClient.from_settings()
    >>> response = await client.chat([Message.user("hi")], tools=[])
    >>> response.content
    'Hello! How can I help?'
"""

import json
import logging
from collections.abc import Sequence
from typing import Any, Self

import httpx

from tandem.agent.config import Settings, settings
from tandem.lib.messages import Message, ModelResponse, ToolCall
from tandem.lib.retry import with_retry
from tandem.lib.throttle import Throttle
from tandem.lib.tools import Tool

logger = logging.getLogger(__name__)

request_throttle = Throttle(
    max_concurrent=settings.max_concurrent_requests,
    min_interval=settings.min_request_interval,
)


class ModelResponseError(Exception):
    """The endpoint answered 2xx but the body is not a usable completion."""


def message_to_wire(message: Message) -> dict[str, Any]:
    """Convert a log message to the chat-completions request format."""
    wire: dict[str, Any] = {"role": message.role, "content": message.content}
    match message.role:
        case "tool":
            wire["tool_call_id"] = message.tool_call_id
        case "assistant" if message.tool_calls:
            wire["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments, ensure_ascii=False),
                    },
                }
                for call in message.tool_calls
            ]
            if not message.content:
                wire["content"] = None
    return wire


def parse_arguments(raw: str | dict[str, Any] | None) -> dict[str, Any]:
    """Decode tool-call arguments; malformed JSON becomes ``{"_raw": ...}``."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Model returned non-JSON tool arguments: %.200s", raw)
        return {"_raw": raw}
    return parsed if isinstance(parsed, dict) else {"_value": parsed}


def parse_completion(body: dict[str, Any]) -> ModelResponse:
    """Extract the first choice of a chat-completions response body."""
    try:
        message = body["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as e:
        raise ModelResponseError(f"Malformed completion: {str(body)[:200]}") from e

    tool_calls = [
        ToolCall(
            id=call.get("id") or f"call_{index}",
            name=call["function"]["name"],
            arguments=parse_arguments(call["function"].get("arguments")),
        )
        for index, call in enumerate(message.get("tool_calls") or [])
    ]
    return ModelResponse(
        content=message.get("content") or "",
        tool_calls=tool_calls,
        reasoning=message.get("reasoning_content") or message.get("reasoning"),
    )


class OpenAIChatClient:
    """Chat client for OpenAI-compatible endpoints.

    Args:
        model: Model name.
        api_key: Bearer token; omitted from headers when None.
        base_url: API base URL.
        timeout: Request timeout in seconds.
        max_attempts: Attempts per request, including the first.
        temperature: Optional sampling temperature.
        throttle: Concurrency limiter; defaults to the process-wide one.
        http: Pre-built httpx client (tests pass one with a mock transport).
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 120,
        max_attempts: int = 3,
        temperature: float | None = None,
        throttle: Throttle | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_attempts = max_attempts
        self.throttle = throttle or request_throttle
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._http = http or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )

    @classmethod
    def from_settings(cls, config: Settings = settings) -> Self:
        return cls(
            config.model,
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            timeout=config.http_timeout_seconds,
            max_attempts=config.max_retries,
            temperature=config.temperature,
        )

    def build_payload(
        self, messages: Sequence[Message], tools: Sequence[Tool]
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [message_to_wire(m) for m in messages],
        }
        if tools:
            payload["tools"] = [t.to_schema() for t in tools]
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        return payload

    async def chat(
        self, messages: Sequence[Message], tools: Sequence[Tool]
    ) -> ModelResponse:
        payload = self.build_payload(messages, tools)

        @with_retry(max_attempts=self.max_attempts)
        async def post() -> dict[str, Any]:
            async with self.throttle:
                response = await self._http.post("/chat/completions", json=payload)
            response.raise_for_status()
            return response.json()

        logger.debug(
            "Chat request: model=%s messages=%d tools=%d",
            self.model,
            len(messages),
            len(tools),
        )
        return parse_completion(await post())

    async def aclose(self) -> None:
        await self._http.aclose()
