"""Single tool-call execution.

``ToolExecutor.execute`` guarantees, for every call it is handed:

1. ``on_tool_use`` runs first and may ``Block`` the call.
2. Exactly one tool-role message carrying the call id is appended, as
   ``{"success": true, "result": ...}`` or
   ``{"success": false, "result": {"error": ...}}``.
3. ``on_tool_finished`` runs afterwards with the outcome and its duration,
   whether the call succeeded, failed, was blocked or named an unknown tool.

Tool exceptions become failure messages and never reach the caller. Hook
exceptions follow the hook error policy.
"""

import json
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any

from tandem.lib.features import ContextInjector, InjectorPattern, pattern_matches
from tandem.lib.hooks import (
    Block,
    HookDispatcher,
    ToolContext,
    ToolFinishedContext,
    ToolOutcome,
)
from tandem.lib.messages import Message, MessageLog, ToolCall
from tandem.lib.metrics import MetricsCollector
from tandem.lib.tools import ToolRegistry

logger = logging.getLogger(__name__)


def format_outcome(outcome: ToolOutcome) -> str:
    """Render an outcome as the JSON content of a tool message."""
    if outcome.success:
        payload: dict[str, Any] = {"success": True, "result": outcome.data}
    else:
        payload = {"success": False, "result": {"error": outcome.error}}
    return json.dumps(payload, ensure_ascii=False, default=str)


class ToolExecutor:
    """Runs one tool call at a time against a registry.

    Args:
        registry: Tools available to the agent.
        hooks: Dispatcher for ``on_tool_use`` / ``on_tool_finished``.
        injectors: Context injectors collected from the agent's features,
            as ``(pattern, injector)`` pairs in feature order.
        metrics: Collector that receives one record per call.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        hooks: HookDispatcher,
        injectors: Sequence[tuple[InjectorPattern, ContextInjector]] = (),
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.registry = registry
        self.hooks = hooks
        self.injectors = list(injectors)
        self.metrics = metrics or MetricsCollector()

    def build_context(self, call: ToolCall) -> dict[str, Any]:
        """Merge every matching injector's mapping; later features win on key clashes."""
        context: dict[str, Any] = {}
        for pattern, injector in self.injectors:
            if pattern_matches(pattern, call.name):
                injected: Mapping[str, Any] = injector(call)
                context.update(injected)
        return context

    async def execute(
        self, call: ToolCall, input: str, log: MessageLog, step: int
    ) -> ToolOutcome:
        ctx = ToolContext(call=call, step=step, input=input, log=log)
        start = time.perf_counter()

        decision = await self.hooks.emit("on_tool_use", ctx)
        tool = self.registry.get(call.name)

        match decision:
            case Block(reason=reason):
                logger.info("Tool %s blocked: %s", call.name, reason)
                outcome = ToolOutcome(
                    call_id=call.id,
                    tool_name=call.name,
                    success=False,
                    error=reason or f"Tool call '{call.name}' was blocked",
                    blocked=True,
                )
            case _ if tool is None:
                logger.warning("Unknown tool requested: %s", call.name)
                outcome = ToolOutcome(
                    call_id=call.id,
                    tool_name=call.name,
                    success=False,
                    error=f"Tool '{call.name}' not found",
                )
            case _:
                try:
                    data = await tool.execute(call.arguments, self.build_context(call))
                except Exception as e:
                    logger.info("Tool %s failed: %s", call.name, e)
                    logger.debug("Tool %s traceback", call.name, exc_info=True)
                    outcome = ToolOutcome(
                        call_id=call.id,
                        tool_name=call.name,
                        success=False,
                        error=str(e) or type(e).__name__,
                    )
                else:
                    outcome = ToolOutcome(
                        call_id=call.id, tool_name=call.name, success=True, data=data
                    )

        outcome.duration_ms = (time.perf_counter() - start) * 1000
        log.append(Message.tool(call.id, format_outcome(outcome)))
        self.metrics.record(outcome)

        await self.hooks.emit(
            "on_tool_finished",
            ToolFinishedContext(call=call, step=step, input=input, log=log, outcome=outcome),
        )
        return outcome
