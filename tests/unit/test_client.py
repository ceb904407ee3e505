"""Tests for the OpenAI-compatible chat client."""

import json

import httpx
import pytest

from conftest import echo
from tandem.agent.client import (
    ModelResponseError,
    OpenAIChatClient,
    message_to_wire,
    parse_arguments,
    parse_completion,
)
from tandem.lib.messages import Message, ToolCall
from tandem.lib.throttle import Throttle
from tandem.lib.tools import Tool


def completion(message: dict[str, object]) -> dict[str, object]:
    return {"choices": [{"index": 0, "message": {"role": "assistant", **message}}]}


def make_client(handler, **kwargs) -> OpenAIChatClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://test/v1")
    return OpenAIChatClient("test-model", http=http, throttle=Throttle(2), **kwargs)


class TestWireFormat:
    """Tests for message mapping to and from the wire."""

    def test_assistant_tool_calls(self) -> None:
        message = Message.assistant("", [ToolCall(id="c1", name="echo", arguments={"text": "é"})])

        wire = message_to_wire(message)

        assert wire["content"] is None
        assert wire["tool_calls"] == [
            {
                "id": "c1",
                "type": "function",
                "function": {"name": "echo", "arguments": '{"text": "é"}'},
            }
        ]

    def test_tool_and_plain_messages(self) -> None:
        assert message_to_wire(Message.tool("c1", "{}")) == {
            "role": "tool",
            "content": "{}",
            "tool_call_id": "c1",
        }
        assert message_to_wire(Message.user("hi")) == {"role": "user", "content": "hi"}

    def test_parse_arguments(self) -> None:
        assert parse_arguments('{"a": 1}') == {"a": 1}
        assert parse_arguments("") == {}
        assert parse_arguments(None) == {}
        assert parse_arguments("{not json") == {"_raw": "{not json"}
        assert parse_arguments("[1, 2]") == {"_value": [1, 2]}

    def test_parse_completion(self) -> None:
        response = parse_completion(
            completion(
                {
                    "content": None,
                    "reasoning_content": "thinking",
                    "tool_calls": [
                        {
                            "id": "call_9",
                            "type": "function",
                            "function": {"name": "echo", "arguments": '{"text": "x"}'},
                        }
                    ],
                }
            )
        )

        assert response.content == ""
        assert response.reasoning == "thinking"
        assert response.tool_calls == [ToolCall(id="call_9", name="echo", arguments={"text": "x"})]

    def test_malformed_completion(self) -> None:
        with pytest.raises(ModelResponseError):
            parse_completion({"choices": []})
        with pytest.raises(ModelResponseError):
            parse_completion({"error": "nope"})


class TestChat:
    """Tests for requests over a mocked transport."""

    @pytest.mark.asyncio
    async def test_payload(self) -> None:
        seen: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/chat/completions"
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=completion({"content": "hello"}))

        client = make_client(handler, temperature=0.2)
        tools: list[Tool] = [echo]

        response = await client.chat([Message.system("sys"), Message.user("hi")], tools)
        await client.aclose()

        assert response.content == "hello"
        payload = seen[0]
        assert payload["model"] == "test-model"
        assert payload["temperature"] == 0.2
        assert payload["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
        ]
        assert payload["tools"][0]["function"]["name"] == "echo"

    @pytest.mark.asyncio
    async def test_no_tools_key_without_tools(self) -> None:
        seen: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=completion({"content": "ok"}))

        client = make_client(handler)
        await client.chat([Message.user("hi")], [])

        assert "tools" not in seen[0]
        assert "temperature" not in seen[0]

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self) -> None:
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            return httpx.Response(400, json={"error": "bad request"})

        client = make_client(handler, max_attempts=3)

        with pytest.raises(httpx.HTTPStatusError):
            await client.chat([Message.user("hi")], [])
        assert attempts == 1
