"""Hook results, hook contexts and hook dispatch.

Every hook point in the loop returns a ``HookResult``: one of the frozen
markers ``Block``, ``Allow``, ``Continue``, ``End``, or ``None`` for
"no opinion". The runtime never inspects anything else a hook returns.

When several hooks answer the same event (the agent's own lifecycle hook
followed by each Feature's loop hook) they all run, and their answers are
merged by precedence:

    Block > End > Continue > Allow > None

The first result of the winning kind is kept, so the first ``Block``
supplies the reason.

Hook exceptions are routed through ``run_hook`` and a ``HookErrorPolicy``:

- ``silent``: log a warning, treat the hook as having returned ``None``
- ``logged``: log the error, then re-raise
- ``propagate``: re-raise untouched (default)

Examples:
    Merge answers from several hooks::

        >>> merge_results([None, ALLOW, Block(reason="quota exceeded"), END])
        Block(reason='quota exceeded')

    Dispatch one event to the agent and its features::

        >>> dispatcher = HookDispatcher([agent, *feature_hooks])
        >>> result = await dispatcher.emit("on_llm_start", LLMStartContext(step=0, log=log))
"""

import enum
import functools
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import datetime
from typing import Any, Literal, TypeAlias, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from tandem.lib.messages import MessageLog, ModelResponse, ToolCall

logger = logging.getLogger(__name__)


# =============================================================================
# RESULTS
# =============================================================================


class Block(BaseModel):
    """Veto the guarded action. ``reason`` is surfaced to the model."""

    model_config = ConfigDict(frozen=True)

    reason: str = ""


class Allow(BaseModel):
    """Explicitly permit the guarded action."""

    model_config = ConfigDict(frozen=True)


class Continue(BaseModel):
    """Start another step instead of finishing."""

    model_config = ConfigDict(frozen=True)


class End(BaseModel):
    """Finish the call now with the current content."""

    model_config = ConfigDict(frozen=True)


HookResult: TypeAlias = Block | Allow | Continue | End | None

ALLOW = Allow()
CONTINUE = Continue()
END = End()

_PRECEDENCE: dict[type[BaseModel], int] = {Block: 4, End: 3, Continue: 2, Allow: 1}


def merge_results(results: Iterable[HookResult]) -> HookResult:
    """Merge hook answers by precedence; the earliest of the winning kind is kept."""
    merged: HookResult = None
    rank = 0
    for result in results:
        if result is None:
            continue
        result_rank = _PRECEDENCE.get(type(result), 0)
        if result_rank > rank:
            merged, rank = result, result_rank
    return merged


# =============================================================================
# ERROR POLICY
# =============================================================================


class HookErrorPolicy(enum.StrEnum):
    """What to do when a hook raises."""

    SILENT = "silent"
    LOGGED = "logged"
    PROPAGATE = "propagate"


PolicyLookup: TypeAlias = Callable[[str], HookErrorPolicy]


def default_policy(_hook_name: str) -> HookErrorPolicy:
    return HookErrorPolicy.PROPAGATE


R = TypeVar("R")


async def run_hook(
    name: str,
    hook: Callable[[], Awaitable[R]],
    policy: HookErrorPolicy = HookErrorPolicy.PROPAGATE,
) -> R | None:
    """Await a hook, applying the error policy to anything it raises."""
    try:
        return await hook()
    except Exception:
        match policy:
            case HookErrorPolicy.SILENT:
                logger.warning("Hook %s failed (silenced)", name, exc_info=True)
                return None
            case HookErrorPolicy.LOGGED:
                logger.exception("Hook %s failed", name)
                raise
            case _:
                raise


# =============================================================================
# CONTEXTS
# =============================================================================


class _HookContext(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


class StepContext(_HookContext):
    """Passed to ``on_step_start``."""

    step: int
    input: str
    log: MessageLog


class StepFinishedContext(_HookContext):
    """Passed to ``on_step_finished``."""

    step: int
    input: str
    log: MessageLog
    response: ModelResponse
    tool_call_count: int = 0


class LLMStartContext(_HookContext):
    """Passed to ``on_llm_start`` before the model is called."""

    step: int
    log: MessageLog
    tool_names: list[str] = Field(default_factory=list)


class LLMFinishContext(_HookContext):
    """Passed to ``on_llm_finish`` before the reply is appended."""

    step: int
    log: MessageLog
    response: ModelResponse
    duration_ms: float = 0.0


class ToolContext(_HookContext):
    """Passed to ``on_tool_use`` before a tool runs."""

    call: ToolCall
    step: int
    input: str
    log: MessageLog


class ToolOutcome(BaseModel):
    """Result of one tool call as seen by hooks and metrics."""

    call_id: str
    tool_name: str
    success: bool
    data: Any = None
    error: str | None = None
    blocked: bool = False
    duration_ms: float = 0.0


class ToolFinishedContext(ToolContext):
    """Passed to ``on_tool_finished``; always fires, even for blocked calls."""

    outcome: ToolOutcome


class InterruptContext(_HookContext):
    """Passed to ``on_interrupt`` when a call stops without completing."""

    reason: str
    step: int
    log: MessageLog


class SubAgentSpawnContext(BaseModel):
    agent_id: str
    type: str
    created_at: datetime


class SubAgentUpdateContext(BaseModel):
    agent_id: str
    type: str
    old_status: str
    new_status: str
    result: str | None = None
    error: str | None = None


class SubAgentDestroyContext(BaseModel):
    agent_id: str
    type: str
    reason: str


class SubAgentInterruptContext(BaseModel):
    agent_id: str
    type: str
    reason: str
    result: str


# =============================================================================
# HOOK BASE CLASSES
# =============================================================================


class StepHooks:
    """Per-step hooks shared by agents and Feature loop hooks.

    Every method is a no-op returning ``None``; override the ones you need.
    """

    async def on_step_start(self, ctx: StepContext) -> HookResult:
        return None

    async def on_llm_start(self, ctx: LLMStartContext) -> HookResult:
        return None

    async def on_llm_finish(self, ctx: LLMFinishContext) -> HookResult:
        return None

    async def on_step_finished(self, ctx: StepFinishedContext) -> HookResult:
        return None

    async def on_tool_use(self, ctx: ToolContext) -> HookResult:
        return None

    async def on_tool_finished(self, ctx: ToolFinishedContext) -> HookResult:
        return None


class LifecycleHooks(StepHooks):
    """Step hooks plus the agent-level notifications.

    ``on_interrupt`` may return replacement text for the partial result.
    The sub-agent notifications fire on the agent that owns the pool.
    """

    async def on_interrupt(self, ctx: InterruptContext) -> str | None:
        return None

    async def on_sub_agent_spawn(self, ctx: SubAgentSpawnContext) -> None:
        return None

    async def on_sub_agent_update(self, ctx: SubAgentUpdateContext) -> None:
        return None

    async def on_sub_agent_destroy(self, ctx: SubAgentDestroyContext) -> None:
        return None

    async def on_sub_agent_interrupt(self, ctx: SubAgentInterruptContext) -> None:
        return None


StepHookName: TypeAlias = Literal[
    "on_step_start",
    "on_llm_start",
    "on_llm_finish",
    "on_step_finished",
    "on_tool_use",
    "on_tool_finished",
]


class HookDispatcher:
    """Fan one step event out to several hook holders and merge the answers.

    Args:
        hooks: Hook holders in call order (agent first, then Features).
        policy_for: Maps a hook name to its error policy.
    """

    def __init__(
        self,
        hooks: Sequence[StepHooks],
        policy_for: PolicyLookup = default_policy,
    ) -> None:
        self.hooks = list(hooks)
        self.policy_for = policy_for

    async def emit(self, name: StepHookName, ctx: BaseModel) -> HookResult:
        results: list[HookResult] = []
        policy = self.policy_for(name)
        for holder in self.hooks:
            handler = getattr(holder, name)
            results.append(await run_hook(name, functools.partial(handler, ctx), policy))
        return merge_results(results)
