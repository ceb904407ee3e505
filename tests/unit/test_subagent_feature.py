"""Tests for the sub-agent feature and its tools."""

import asyncio
import json
from collections.abc import Sequence

import pytest

from conftest import ScriptedClient, call, reply
from tandem.agent.core import Agent
from tandem.agent.features.subagent import SubAgentFeature, SubAgentLoopHooks
from tandem.agent.prompts import BASIC_PROMPT
from tandem.agent.subagents import AGENT_TYPES, build_agent_factory
from tandem.lib.hooks import LifecycleHooks, SubAgentSpawnContext
from tandem.lib.messages import Message, MessageLog, ModelResponse
from tandem.lib.pool import AgentPool


def deliveries(log: MessageLog) -> list[str]:
    return [m.content for m in log if m.content.startswith("[Sub-agent ")]


def tool_results(log: MessageLog) -> list[dict[str, object]]:
    return [json.loads(m.content) for m in log if m.role == "tool"]


def slow_reply(text: str, delay: float = 0.02):
    async def respond(messages: Sequence[Message]) -> ModelResponse:
        await asyncio.sleep(delay)
        return reply(text)

    return respond


def parent_with(parent_client: ScriptedClient, child_client: ScriptedClient) -> Agent:
    feature = SubAgentFeature(
        lambda type: Agent(child_client, name=type), wait_warning_seconds=None
    )
    return Agent(parent_client, features=[feature])


class TestSubAgentFlow:
    """End-to-end parent/child flows."""

    @pytest.mark.asyncio
    async def test_spawn_send_wait(self) -> None:
        child_client = ScriptedClient([slow_reply("child says hi")])
        parent_client = ScriptedClient(
            [
                call("spawn_agent", "c1", type="Basic"),
                call("send_to_agent", "c2", agent_id="Basic_1", message="say hi"),
                call("wait", "c3"),
                reply("final"),
            ]
        )
        parent = parent_with(parent_client, child_client)

        result = await parent.on_call("delegate")

        assert result == "final"
        assert deliveries(parent.log) == ["[Sub-agent Basic_1 finished]:\n\nchild says hi"]
        spawn = tool_results(parent.log)[0]
        assert spawn["success"] is True
        assert spawn["result"]["agent_id"] == "Basic_1"
        [listed] = spawn["result"]["all_agents"]
        assert (listed["agent_id"], listed["type"], listed["status"]) == ("Basic_1", "Basic", "idle")
        assert listed["error"] is None
        assert child_client.requests[0][-1] == Message.user("say hi")

    @pytest.mark.asyncio
    async def test_parent_waits_instead_of_finishing(self) -> None:
        """A reply without tool calls waits for busy children first."""
        child_client = ScriptedClient([slow_reply("slow result")])
        parent_client = ScriptedClient(
            [
                call("spawn_agent", "c1", type="Basic"),
                call("send_to_agent", "c2", agent_id="Basic_1", message="work"),
                reply("I'll wait"),
                reply("final"),
            ]
        )
        parent = parent_with(parent_client, child_client)

        result = await parent.on_call("delegate")

        assert result == "final"
        contents = [m.content for m in parent.log]
        assert contents.index("[Sub-agent Basic_1 finished]:\n\nslow result") < contents.index(
            "final"
        )

    @pytest.mark.asyncio
    async def test_tool_errors(self) -> None:
        parent_client = ScriptedClient(
            [
                call("send_to_agent", "c1", agent_id="Ghost_1", message="hi"),
                call("wait", "c2"),
                call("spawn_agent", "c3", type="Nope"),
                call("close_agent", "c4", agent_id="Ghost_1"),
                reply("gave up"),
            ]
        )
        feature = SubAgentFeature(build_agent_factory(ScriptedClient()), wait_warning_seconds=None)
        parent = Agent(parent_client, features=[feature])

        await parent.on_call("try")

        errors = [r["result"]["error"] for r in tool_results(parent.log)]
        assert errors[0] == "Sub-agent not found: Ghost_1"
        assert errors[1] == "No active sub-agents to wait for"
        assert "Unknown agent type 'Nope'" in errors[2]
        assert errors[3] == "Sub-agent not found: Ghost_1"

    @pytest.mark.asyncio
    async def test_busy_child_rejects_second_message(self) -> None:
        child_client = ScriptedClient([slow_reply("done", delay=0.05)])
        parent_client = ScriptedClient(
            [
                call("spawn_agent", "c1", type="Basic"),
                call("send_to_agent", "c2", agent_id="Basic_1", message="one"),
                call("send_to_agent", "c3", agent_id="Basic_1", message="two"),
                reply("final"),
            ]
        )
        parent = parent_with(parent_client, child_client)

        await parent.on_call("delegate")

        third = tool_results(parent.log)[2]
        assert third["success"] is False
        assert "busy" in third["result"]["error"]

    @pytest.mark.asyncio
    async def test_listing_shows_failure_reason(self) -> None:
        """A failed child is only visible through the listing, with its error."""
        child_client = ScriptedClient([RuntimeError("child exploded")])

        async def list_later(messages: Sequence[Message]) -> ModelResponse:
            await asyncio.sleep(0.02)
            return call("list_agents", "c3")

        parent_client = ScriptedClient(
            [
                call("spawn_agent", "c1", type="Basic"),
                call("send_to_agent", "c2", agent_id="Basic_1", message="work"),
                list_later,
                reply("noted"),
            ]
        )
        parent = parent_with(parent_client, child_client)

        assert await parent.on_call("delegate") == "noted"

        [listed] = tool_results(parent.log)[2]["result"]["agents"]
        assert listed["status"] == "failed"
        assert listed["error"] == "child exploded"
        assert listed["result"] is None
        assert listed["created_at"]
        assert deliveries(parent.log) == []

    @pytest.mark.asyncio
    async def test_owner_notified_and_dispose_closes_children(self) -> None:
        spawned: list[str] = []

        class Parent(Agent):
            async def on_sub_agent_spawn(self, ctx: SubAgentSpawnContext) -> None:
                spawned.append(ctx.agent_id)

        feature = SubAgentFeature(
            lambda type: Agent(ScriptedClient(), name=type), wait_warning_seconds=None
        )
        parent = Parent(
            ScriptedClient([call("spawn_agent", type="Explorer"), reply("ok")]),
            features=[feature],
        )

        await parent.on_call("spawn one")
        assert spawned == ["Explorer_1"]
        assert isinstance(feature.pool, AgentPool)
        assert len(feature.pool.list_instances()) == 1

        await parent.dispose()
        assert feature.pool.list_instances() == []

    def test_hooks_need_initiated_feature(self) -> None:
        hooks = SubAgentLoopHooks(SubAgentFeature(wait_warning_seconds=None))

        with pytest.raises(RuntimeError, match="not been initiated"):
            hooks.pool


class TestAgentTypes:
    """Tests for the built-in child types."""

    def test_known_types(self) -> None:
        assert set(AGENT_TYPES) == {"Basic", "Explorer"}

    def test_factory_builds_configured_agents(self) -> None:
        factory = build_agent_factory(ScriptedClient(), max_steps=4)

        explorer = factory("Explorer")

        assert isinstance(explorer, Agent)
        assert explorer.max_steps == 4
        assert {f.name for f in explorer.features} == {"context", "todo"}
        assert factory("Basic").features == []

    def test_unknown_type(self) -> None:
        with pytest.raises(ValueError, match="Available: Basic, Explorer"):
            build_agent_factory(ScriptedClient())("Wizard")

    @pytest.mark.asyncio
    async def test_default_factory_uses_parent_client(self) -> None:
        """Without a factory, children share the parent's client."""
        shared = ScriptedClient(
            [
                call("spawn_agent", "c1", type="Basic"),
                call("send_to_agent", "c2", agent_id="Basic_1", message="hi"),
            ]
        )
        parent = Agent(shared, features=[SubAgentFeature(wait_warning_seconds=None)])

        await parent.on_call("go")

        child_requests = [r for r in shared.requests if r[0] == Message.system(BASIC_PROMPT)]
        assert len(child_requests) == 1
        assert child_requests[0][1] == Message.user("hi")
        assert deliveries(parent.log) == ["[Sub-agent Basic_1 finished]:\n\ndone"]


class TestLifecycleHooksDefault:
    def test_agent_is_lifecycle_hooks(self) -> None:
        assert isinstance(Agent(ScriptedClient()), LifecycleHooks)
