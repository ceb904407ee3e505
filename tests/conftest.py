"""Shared test fixtures.

``ScriptedClient`` stands in for the model: it replays a queue of
responses and records every request it receives.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, TypeAlias

import pytest
from pydantic import BaseModel

from tandem.lib.messages import Message, MessageLog, ModelResponse, ToolCall
from tandem.lib.tools import Tool, ToolRuntime, tool

Scripted: TypeAlias = ModelResponse | Exception | Callable[[Sequence[Message]], Awaitable[ModelResponse]]


def reply(content: str = "done") -> ModelResponse:
    """A model response without tool calls."""
    return ModelResponse(content=content)


def call(name: str, call_id: str | None = None, content: str = "", **arguments: Any) -> ModelResponse:
    """A model response requesting a single tool call."""
    return ModelResponse(
        content=content,
        tool_calls=[ToolCall(id=call_id or f"call_{name}", name=name, arguments=arguments)],
    )


def calls(*tool_calls: ToolCall, content: str = "") -> ModelResponse:
    return ModelResponse(content=content, tool_calls=list(tool_calls))


class ScriptedClient:
    """Fake model client answering from a queue. An empty queue answers ``"done"``."""

    def __init__(self, responses: Iterable[Scripted] = ()) -> None:
        self.responses: deque[Scripted] = deque(responses)
        self.requests: list[list[Message]] = []
        self.tool_names: list[list[str]] = []
        self.closed = False

    def add(self, *responses: Scripted) -> None:
        self.responses.extend(responses)

    async def chat(self, messages: Sequence[Message], tools: Sequence[Tool]) -> ModelResponse:
        self.requests.append(list(messages))
        self.tool_names.append([t.name for t in tools])
        await asyncio.sleep(0)
        if not self.responses:
            return reply()
        item = self.responses.popleft()
        if isinstance(item, Exception):
            raise item
        if isinstance(item, ModelResponse):
            return item
        return await item(messages)

    async def aclose(self) -> None:
        self.closed = True


class RecordingSink:
    """Log sink that keeps every push."""

    def __init__(self) -> None:
        self.pushes: list[tuple[str, int]] = []

    def push_messages(self, agent_id: str, messages: Sequence[Message]) -> None:
        self.pushes.append((agent_id, len(messages)))


class EchoInput(BaseModel):
    text: str


class EchoOutput(BaseModel):
    text: str


@tool("Echo the given text back.")
async def echo(params: EchoInput) -> EchoOutput:
    return EchoOutput(text=params.text)


@tool("Always fails.")
async def explode(params: EchoInput, context: ToolRuntime) -> EchoOutput:
    raise RuntimeError(f"boom: {params.text}")


@pytest.fixture
def client() -> ScriptedClient:
    return ScriptedClient()


@pytest.fixture
def log() -> MessageLog:
    return MessageLog()


@pytest.fixture
def echo_tool() -> Tool:
    return echo


@pytest.fixture
def explode_tool() -> Tool:
    return explode
