"""The step loop that drives one agent call.

Each step:

1. ``on_step_start`` (informational)
2. ``on_llm_start``; a ``Block`` appends an assistant message carrying the
   reason and completes the call without contacting the model
3. model call over the full log and tool catalogue
4. ``on_llm_finish``; the reply is appended regardless of the answer
5. ``End`` from (4) completes the call with the reply's content
6. no tool calls: ``Continue`` from (4) runs another step; otherwise every
   Feature's ``before_no_tool_calls`` is asked, and ``Continue`` runs
   another step; otherwise ``on_step_finished`` fires and the call completes
7. tool calls run strictly in order, then ``after_tool_calls`` fires; if
   ``wait`` was among them and a Feature agrees to wait, the loop suspends
   on that Feature's mailbox, injects the delivery and starts a new step
8. ``on_step_finished``; ``End`` completes, ``Continue`` runs another step

Running out of steps interrupts the call: ``on_interrupt`` may supply the
final text (otherwise the last non-empty content is used), every Feature's
``on_max_steps`` fires and the result is returned with ``completed=False``.
"""

import logging
import time
from collections.abc import Sequence
from typing import Protocol

from pydantic import BaseModel

from tandem.lib.executor import ToolExecutor
from tandem.lib.features import ContextInjector, InjectorPattern, LoopHooks
from tandem.lib.hooks import (
    Block,
    Continue,
    End,
    HookDispatcher,
    InterruptContext,
    LifecycleHooks,
    LLMFinishContext,
    LLMStartContext,
    PolicyLookup,
    StepContext,
    StepFinishedContext,
    default_policy,
    merge_results,
    run_hook,
)
from tandem.lib.messages import Message, MessageLog, ModelResponse
from tandem.lib.metrics import MetricsCollector
from tandem.lib.tools import Tool, ToolRegistry

logger = logging.getLogger(__name__)

WAIT_TOOL_NAME = "wait"
MAX_STEPS_REASON = "max_steps_reached"
DEFAULT_BLOCK_RESPONSE = "LLM call blocked by hook"


class ModelClient(Protocol):
    """Anything that can answer a chat request with tool calling."""

    async def chat(
        self, messages: Sequence[Message], tools: Sequence[Tool]
    ) -> ModelResponse: ...


class LoopResult(BaseModel):
    """Outcome of one call."""

    final_response: str
    completed: bool
    steps: int


def partial_result(log: MessageLog) -> str:
    """Last non-empty message content, or an empty string."""
    for message in reversed(log.messages):
        if message.content:
            return message.content
    return ""


class LoopRunner:
    """Drives the steps of a single call.

    Args:
        client: Model client.
        registry: Tool catalogue sent to the model.
        lifecycle: The agent's own hooks (run before Feature hooks).
        loop_hooks: Loop hooks collected from the agent's features.
        injectors: Context injectors collected from the agent's features.
        metrics: Per-agent tool metrics.
        max_steps: Step limit for the call.
        agent_id: Identifier passed to ``on_max_steps``.
        policy_for: Maps a hook name to its error policy.
    """

    def __init__(
        self,
        client: ModelClient,
        registry: ToolRegistry,
        lifecycle: LifecycleHooks,
        loop_hooks: Sequence[LoopHooks] = (),
        injectors: Sequence[tuple[InjectorPattern, ContextInjector]] = (),
        metrics: MetricsCollector | None = None,
        *,
        max_steps: int = 10,
        agent_id: str = "main",
        policy_for: PolicyLookup = default_policy,
    ) -> None:
        self.client = client
        self.registry = registry
        self.lifecycle = lifecycle
        self.loop_hooks = list(loop_hooks)
        self.max_steps = max_steps
        self.agent_id = agent_id
        self.policy_for = policy_for
        self.hooks = HookDispatcher([lifecycle, *self.loop_hooks], policy_for)
        self.executor = ToolExecutor(registry, self.hooks, injectors, metrics)

    async def run(self, input: str, log: MessageLog, is_first_call: bool = True) -> LoopResult:
        logger.debug(
            "Agent %s: starting call (first=%s, %d messages)",
            self.agent_id,
            is_first_call,
            len(log),
        )
        step = 0
        for step in range(self.max_steps):
            await self.hooks.emit("on_step_start", StepContext(step=step, input=input, log=log))

            decision = await self.hooks.emit(
                "on_llm_start",
                LLMStartContext(step=step, log=log, tool_names=self.registry.names()),
            )
            if isinstance(decision, Block):
                reason = decision.reason or DEFAULT_BLOCK_RESPONSE
                log.append(Message.assistant(reason))
                logger.info("Agent %s: model call blocked: %s", self.agent_id, reason)
                return LoopResult(final_response=reason, completed=True, steps=step + 1)

            start = time.perf_counter()
            response = await self.client.chat(log.messages, self.registry.all())
            duration_ms = (time.perf_counter() - start) * 1000

            decision = await self.hooks.emit(
                "on_llm_finish",
                LLMFinishContext(step=step, log=log, response=response, duration_ms=duration_ms),
            )
            log.append(
                Message.assistant(response.content, response.tool_calls, response.reasoning)
            )

            if isinstance(decision, End):
                return LoopResult(
                    final_response=response.content, completed=True, steps=step + 1
                )

            if not response.tool_calls:
                if isinstance(decision, Continue):
                    continue
                if isinstance(await self._before_no_tool_calls(log, response, step), Continue):
                    continue
                await self.hooks.emit(
                    "on_step_finished",
                    StepFinishedContext(step=step, input=input, log=log, response=response),
                )
                return LoopResult(
                    final_response=response.content, completed=True, steps=step + 1
                )

            wait_called = False
            for call in response.tool_calls:
                if call.name == WAIT_TOOL_NAME:
                    wait_called = True
                await self.executor.execute(call, input, log, step)

            for hooks in self.loop_hooks:
                await run_hook(
                    "after_tool_calls",
                    lambda hooks=hooks: hooks.after_tool_calls(log, response.tool_calls, step),
                    self.policy_for("after_tool_calls"),
                )

            if wait_called and await self._handle_wait(log, step):
                continue

            decision = await self.hooks.emit(
                "on_step_finished",
                StepFinishedContext(
                    step=step,
                    input=input,
                    log=log,
                    response=response,
                    tool_call_count=len(response.tool_calls),
                ),
            )
            # Continue and None both fall through to the next step.
            if isinstance(decision, End):
                return LoopResult(
                    final_response=response.content, completed=True, steps=step + 1
                )

        return await self._interrupt(log, step)

    async def _before_no_tool_calls(
        self, log: MessageLog, response: ModelResponse, step: int
    ) -> Continue | Block | End | None:
        results = []
        for hooks in self.loop_hooks:
            results.append(
                await run_hook(
                    "before_no_tool_calls",
                    lambda hooks=hooks: hooks.before_no_tool_calls(log, response, step),
                    self.policy_for("before_no_tool_calls"),
                )
            )
        merged = merge_results(results)
        return merged if isinstance(merged, (Continue, Block, End)) else None

    async def _handle_wait(self, log: MessageLog, step: int) -> bool:
        """Suspend on the first Feature that agrees to wait. True if a message arrived."""
        for hooks in self.loop_hooks:
            should_wait = await run_hook(
                "should_wait",
                lambda hooks=hooks: hooks.should_wait(log, step),
                self.policy_for("should_wait"),
            )
            if not should_wait:
                continue
            logger.info("Agent %s: waiting for sub-agent message", self.agent_id)
            message = await hooks.wait_for_message()
            if message is None:
                continue
            logger.info("Agent %s: received message from %s", self.agent_id, message.agent_id)
            await run_hook(
                "after_wait",
                lambda hooks=hooks: hooks.after_wait(message, log, step),
                self.policy_for("after_wait"),
            )
            return True
        return False

    async def _interrupt(self, log: MessageLog, step: int) -> LoopResult:
        logger.warning(
            "Agent %s: reached max steps (%d) without completing",
            self.agent_id,
            self.max_steps,
        )
        replacement = await run_hook(
            "on_interrupt",
            lambda: self.lifecycle.on_interrupt(
                InterruptContext(reason=MAX_STEPS_REASON, step=step, log=log)
            ),
            self.policy_for("on_interrupt"),
        )
        final = replacement if replacement is not None else partial_result(log)
        for hooks in self.loop_hooks:
            await run_hook(
                "on_max_steps",
                lambda hooks=hooks: hooks.on_max_steps(log, final, step, self.agent_id),
                self.policy_for("on_max_steps"),
            )
        return LoopResult(final_response=final, completed=False, steps=self.max_steps)
