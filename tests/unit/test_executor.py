"""Tests for single tool-call execution."""

import json
import re

import pytest

from tandem.lib.executor import ToolExecutor
from tandem.lib.hooks import (
    Block,
    HookDispatcher,
    HookResult,
    StepHooks,
    ToolContext,
    ToolFinishedContext,
    ToolOutcome,
)
from tandem.lib.messages import MessageLog, ToolCall
from tandem.lib.metrics import MetricsCollector
from tandem.lib.tools import Tool, ToolRegistry


class Recorder(StepHooks):
    def __init__(self, block: str | None = None) -> None:
        self.block = block
        self.used: list[str] = []
        self.finished: list[ToolOutcome] = []

    async def on_tool_use(self, ctx: ToolContext) -> HookResult:
        self.used.append(ctx.call.name)
        return Block(reason=self.block) if self.block is not None else None

    async def on_tool_finished(self, ctx: ToolFinishedContext) -> HookResult:
        self.finished.append(ctx.outcome)
        return None


def content(log: MessageLog) -> dict[str, object]:
    return json.loads(log.messages[-1].content)


class TestToolExecutor:
    """Tests for ToolExecutor.execute."""

    @pytest.mark.asyncio
    async def test_success(self, log: MessageLog, echo_tool: Tool) -> None:
        hooks = Recorder()
        metrics = MetricsCollector()
        executor = ToolExecutor(ToolRegistry([echo_tool]), HookDispatcher([hooks]), metrics=metrics)

        outcome = await executor.execute(ToolCall(id="c1", name="echo", arguments={"text": "hi"}), "in", log, 0)

        assert outcome.success
        assert log.messages[-1].tool_call_id == "c1"
        assert content(log) == {"success": True, "result": {"text": "hi"}}
        assert hooks.used == ["echo"]
        assert hooks.finished == [outcome]
        assert metrics.get("echo").call_count == 1

    @pytest.mark.asyncio
    async def test_tool_exception_becomes_failure(self, log: MessageLog, explode_tool: Tool) -> None:
        hooks = Recorder()
        metrics = MetricsCollector()
        executor = ToolExecutor(ToolRegistry([explode_tool]), HookDispatcher([hooks]), metrics=metrics)

        outcome = await executor.execute(ToolCall(id="c1", name="explode", arguments={"text": "x"}), "in", log, 0)

        assert not outcome.success
        assert content(log) == {"success": False, "result": {"error": "boom: x"}}
        assert len(hooks.finished) == 1
        assert metrics.get("explode").error_count == 1

    @pytest.mark.asyncio
    async def test_unknown_tool(self, log: MessageLog) -> None:
        hooks = Recorder()
        executor = ToolExecutor(ToolRegistry(), HookDispatcher([hooks]))

        outcome = await executor.execute(ToolCall(id="c1", name="nope"), "in", log, 0)

        assert not outcome.success
        assert content(log)["result"] == {"error": "Tool 'nope' not found"}
        assert len(hooks.finished) == 1

    @pytest.mark.asyncio
    async def test_blocked_call_never_runs(self, log: MessageLog, explode_tool: Tool) -> None:
        """A Block skips the tool but still writes an outcome and fires on_tool_finished."""
        hooks = Recorder(block="not allowed here")
        executor = ToolExecutor(ToolRegistry([explode_tool]), HookDispatcher([hooks]))

        outcome = await executor.execute(ToolCall(id="c1", name="explode", arguments={"text": "x"}), "in", log, 0)

        assert outcome.blocked
        assert content(log) == {"success": False, "result": {"error": "not allowed here"}}
        assert hooks.finished[0].blocked

    @pytest.mark.asyncio
    async def test_injectors_merge_in_order(self, log: MessageLog) -> None:
        seen: dict[str, object] = {}

        async def handler(args: dict[str, object], context: dict[str, object]) -> str:
            seen.update(context)
            return "ok"

        probe = Tool("task_probe", "Probe.", {"type": "object"}, handler)
        executor = ToolExecutor(
            ToolRegistry([probe]),
            HookDispatcher([]),
            injectors=[
                (re.compile(r"^task_"), lambda call: {"store": "first", "a": 1}),
                ("task_probe", lambda call: {"store": "second"}),
                ("other", lambda call: {"unused": True}),
            ],
        )

        await executor.execute(ToolCall(id="c1", name="task_probe"), "in", log, 0)

        assert seen == {"store": "second", "a": 1}
