"""Agent facade and the top-level session runner.

``Agent`` owns one message log, one tool registry and an ordered set of
Features. Every ``on_call`` builds a fresh ``LoopRunner`` over the same
persisted log, so a second call continues the conversation of the first.

Subclass ``Agent`` and override any ``LifecycleHooks`` method to steer
the loop; the agent's own hook runs before every Feature hook for the
same event.

Key patterns:
1. Features are added with ``use()`` before the first call and initiated
   lazily, in dependency order, on that call
2. A child spawned by a pool gets a ``parent_handle``; when its call runs
   out of steps the partial result is relayed to the parent
3. ``run_agent`` wires settings, client, features, trace and session
   storage together for the CLI
"""

import logging
import time
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Self

from tandem.agent.client import OpenAIChatClient
from tandem.agent.config import settings
from tandem.agent.features.context import ContextFeature
from tandem.agent.features.subagent import SubAgentFeature
from tandem.agent.features.todo import TodoFeature
from tandem.agent.models import SessionResult
from tandem.agent.prompts import get_system_prompt
from tandem.lib.features import (
    ContextInjector,
    Feature,
    FeatureInitContext,
    InjectorPattern,
    LoopHooks,
    resolve_order,
)
from tandem.lib.history import load_latest_session, save_session
from tandem.lib.hooks import HookErrorPolicy, LifecycleHooks
from tandem.lib.loop import MAX_STEPS_REASON, LoopResult, LoopRunner, ModelClient
from tandem.lib.messages import LogSink, LogSnapshot, Message, MessageLog
from tandem.lib.metrics import MetricsCollector
from tandem.lib.pool import PoolHandle
from tandem.lib.tools import Tool, ToolRegistry
from tandem.lib.trace import TraceLogger
from tandem.version import AGENT_VERSION

logger = logging.getLogger(__name__)


class AgentBusyError(RuntimeError):
    """Raised when ``on_call`` is entered while a call is already running."""


class Agent(LifecycleHooks):
    """A tool-using agent driven by the step loop.

    Args:
        client: Model client.
        tools: Tools registered before any Feature tools.
        features: Features to ``use`` immediately.
        max_steps: Step limit per call. Defaults to settings.
        system_message: Prepended once, on the first call of a fresh log.
        name: Agent id when the agent is not owned by a pool.
        sink: Observer notified after every log mutation.
        hook_error_policy: Default policy for hook exceptions.
        hook_error_overrides: Per-hook-name policy overrides.
    """

    def __init__(
        self,
        client: ModelClient,
        *,
        tools: Iterable[Tool] = (),
        features: Iterable[Feature] = (),
        max_steps: int | None = None,
        system_message: str | None = None,
        name: str = "main",
        sink: LogSink | None = None,
        hook_error_policy: HookErrorPolicy | None = None,
        hook_error_overrides: Mapping[str, HookErrorPolicy] | None = None,
    ) -> None:
        self.client = client
        self.name = name
        self.max_steps = max_steps if max_steps is not None else settings.max_steps
        self.system_message = system_message
        self.sink = sink
        self.hook_error_policy = hook_error_policy or settings.hook_error_policy
        self.hook_error_overrides = dict(hook_error_overrides or {})
        self.registry = ToolRegistry(tools)
        self.metrics = MetricsCollector(agent_id=name)
        self.parent_handle: PoolHandle | None = None
        self.last_result: LoopResult | None = None

        self._features: list[Feature] = []
        self._injectors: list[tuple[InjectorPattern, ContextInjector]] = []
        self._loop_hooks: list[LoopHooks] = []
        self._log = MessageLog(sink=sink, agent_id=name)
        self._initiated = False
        self._in_flight = False

        for feature in features:
            self.use(feature)

    # -------------------------------------------------------------------------
    # Identity and features
    # -------------------------------------------------------------------------

    @property
    def agent_id(self) -> str:
        return self.parent_handle.agent_id if self.parent_handle else self.name

    @property
    def features(self) -> list[Feature]:
        return list(self._features)

    @property
    def log(self) -> MessageLog:
        return self._log

    def use(self, feature: Feature) -> Self:
        """Add a feature. Must happen before the first call."""
        if self._initiated:
            raise RuntimeError(f"Cannot add feature '{feature.name}' after initiation")
        if self.get_feature(feature.name) is not None:
            raise ValueError(f"Feature '{feature.name}' is already in use")
        self._features.append(feature)
        return self

    def get_feature(self, name: str) -> Feature | None:
        for feature in self._features:
            if feature.name == name:
                return feature
        return None

    def get_hook_error_policy(self, hook_name: str) -> HookErrorPolicy:
        return self.hook_error_overrides.get(hook_name, self.hook_error_policy)

    async def initiate(self) -> None:
        """Initiate features in dependency order and collect their contributions."""
        if self._initiated:
            return
        ordered = resolve_order(self._features)
        for feature in ordered:
            for t in feature.get_tools():
                self.registry.register(t)
            ctx = FeatureInitContext(
                agent_id=self.agent_id,
                agent=self,
                get_feature=self.get_feature,
                register_tool=self.registry.register,
            )
            await feature.on_initiate(ctx)
            for t in await feature.get_async_tools(ctx):
                self.registry.register(t)
            self._injectors.extend(feature.get_context_injectors().items())
            hooks = feature.get_loop_hooks()
            if hooks is not None:
                self._loop_hooks.append(hooks)
            logger.debug("Agent %s: initiated feature %s", self.agent_id, feature.name)
        self._features = ordered
        self._initiated = True

    # -------------------------------------------------------------------------
    # Calls
    # -------------------------------------------------------------------------

    async def on_call(self, input: str) -> str:
        """Run one call on the persisted log and return the final response.

        Raises:
            AgentBusyError: If a call on this agent is already running.
        """
        if self._in_flight:
            raise AgentBusyError(f"Agent {self.agent_id} is already running a call")
        self._in_flight = True
        try:
            await self.initiate()
            log = self._log
            log.agent_id = self.metrics.agent_id = self.agent_id
            is_first_call = len(log) == 0
            if is_first_call and self.system_message:
                log.append(Message.system(self.system_message))
            log.append(Message.user(input))

            runner = LoopRunner(
                self.client,
                self.registry,
                self,
                self._loop_hooks,
                self._injectors,
                self.metrics,
                max_steps=self.max_steps,
                agent_id=self.agent_id,
                policy_for=self.get_hook_error_policy,
            )
            result = await runner.run(input, log, is_first_call)
            self.last_result = result
            logger.info(
                "Agent %s: call finished (completed=%s, steps=%d)",
                self.agent_id,
                result.completed,
                result.steps,
            )

            if not result.completed and self.parent_handle is not None:
                await self.parent_handle.handle_interrupt(
                    MAX_STEPS_REASON, result.final_response
                )
            return result.final_response
        finally:
            self._in_flight = False

    # -------------------------------------------------------------------------
    # Persistence and teardown
    # -------------------------------------------------------------------------

    def save(self) -> LogSnapshot:
        return self._log.snapshot()

    def load(self, snapshot: LogSnapshot) -> None:
        """Replace the log with a saved conversation."""
        self._log = MessageLog.from_snapshot(snapshot, sink=self.sink, agent_id=self.agent_id)

    def reset(self) -> None:
        self._log = MessageLog(sink=self.sink, agent_id=self.agent_id)
        self.last_result = None

    async def dispose(self) -> None:
        """Tear down features in reverse initiation order."""
        for feature in reversed(self._features):
            await feature.on_destroy()
        logger.debug("Agent %s disposed", self.agent_id)


# =============================================================================
# SESSION RUNNER
# =============================================================================


async def run_agent(
    task: str,
    *,
    session_id: str | None = None,
    max_steps: int | None = None,
    resume: bool = False,
    trace: bool = True,
) -> SessionResult:
    """Run the main agent on a task.

    The agent gets the context, todo and sub-agent features. Its log (and
    every child's) streams to a ``TraceLogger`` that is saved as markdown
    at the end; the conversation is saved under ``settings.sessions_path``.

    Args:
        task: The task/prompt for the agent.
        session_id: Unique identifier for this session. Auto-generated if None.
        max_steps: Step limit per call. Defaults to settings.
        resume: Continue the latest saved conversation of ``session_id``.
        trace: Print messages to the console as they arrive.

    Returns:
        SessionResult with the final response and metadata.
    """
    if session_id is None:
        session_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    sessions_path = Path(settings.sessions_path)

    logger.info("Starting session %s with model %s", session_id, settings.model)
    trace_name = f"{datetime.now().strftime('%H%M%S')}.md"
    trace_path = Path(settings.traces_path) / session_id / trace_name
    trace_logger = TraceLogger(trace_path=trace_path, title=f"Session {session_id}", echo=trace)
    trace_logger.log_text(task, heading="Task")

    client = OpenAIChatClient.from_settings()
    agent = Agent(
        client,
        features=[ContextFeature(), TodoFeature(), SubAgentFeature()],
        max_steps=max_steps,
        system_message=get_system_prompt(),
        sink=trace_logger,
    )
    if resume:
        snapshot = load_latest_session(session_id, base_dir=sessions_path)
        if snapshot is None:
            logger.warning("No saved conversation for %s; starting fresh", session_id)
        else:
            agent.load(snapshot)
            logger.info("Resumed %s with %d messages", session_id, len(snapshot.messages))

    start = time.monotonic()
    try:
        response = await agent.on_call(task)
    finally:
        await agent.dispose()
        await client.aclose()
    duration = time.monotonic() - start

    trace_logger.save()
    save_session(agent.save(), session_id=session_id, base_dir=sessions_path)
    agent.metrics.log_summary()

    result = agent.last_result
    return SessionResult(
        session_id=session_id,
        agent_version=AGENT_VERSION,
        timestamp=datetime.now().isoformat(),
        task=task,
        response=response,
        completed=result.completed if result else True,
        steps=result.steps if result else 0,
        duration_seconds=duration,
        tool_metrics=agent.metrics.get_summary(),
    )
