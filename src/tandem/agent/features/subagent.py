"""Sub-agent feature: lets an agent spawn and coordinate child agents.

Owns one ``AgentPool`` per parent agent and contributes five tools that
reach it through the injected context:

- ``spawn_agent``: create an idle child of a named type
- ``send_to_agent``: start work on a child; returns immediately
- ``list_agents``: current children and their status
- ``close_agent``: dispose a child
- ``wait``: ask the loop to suspend until a child reports

Its loop hooks carry the parent's side of the mailbox. Results already
delivered are injected after each batch of tool calls. ``wait`` and a
reply without tool calls both suspend the parent while any child is busy,
so a parent never finishes while its children are still working.

Examples:
    >>> agent = Agent(client, features=[SubAgentFeature()])
    >>> await agent.on_call("Explore src/ and tests/ in parallel, then summarize")
"""

import logging
import re
from collections.abc import Sequence
from datetime import datetime

from pydantic import BaseModel, Field

from tandem.agent.config import settings
from tandem.lib.features import (
    ContextInjector,
    Feature,
    FeatureInitContext,
    InjectorPattern,
    LoopHooks,
)
from tandem.lib.hooks import CONTINUE, HookResult
from tandem.lib.messages import Message, MessageLog, ModelResponse, ToolCall
from tandem.lib.pool import (
    AgentFactory,
    AgentPool,
    MailMessage,
    PoolError,
    SubAgentStatus,
)
from tandem.lib.tools import Tool, ToolError, ToolRuntime, tool

logger = logging.getLogger(__name__)


def format_delivery(message: MailMessage) -> Message:
    return Message.assistant(f"[Sub-agent {message.agent_id} finished]:\n\n{message.message}")


# --- Schemas ---


class AgentSummary(BaseModel):
    agent_id: str
    type: str
    status: SubAgentStatus
    created_at: datetime
    result: str | None = Field(default=None, description="Last reported result")
    error: str | None = Field(default=None, description="Why the agent failed, if it did")


class SpawnAgentInput(BaseModel):
    type: str = Field(description="Agent type to create, e.g. 'Basic' or 'Explorer'")


class ListAgentsInput(BaseModel):
    filter: SubAgentStatus | None = Field(
        default=None, description="Only list agents with this status"
    )


class SendToAgentInput(BaseModel):
    agent_id: str = Field(description="Id returned by spawn_agent")
    message: str = Field(description="Complete instructions; the agent sees nothing else")


class CloseAgentInput(BaseModel):
    agent_id: str = Field(description="Id returned by spawn_agent")
    reason: str = Field(default="manual", description="Why the agent is being closed")


class WaitInput(BaseModel):
    pass


class SpawnAgentOutput(BaseModel):
    agent_id: str
    type: str
    all_agents: list[AgentSummary]


class ListAgentsOutput(BaseModel):
    agents: list[AgentSummary]
    all_agents: list[AgentSummary]


class SendToAgentOutput(BaseModel):
    agent_id: str
    status: SubAgentStatus
    all_agents: list[AgentSummary]


class CloseAgentOutput(BaseModel):
    agent_id: str
    closed: bool
    all_agents: list[AgentSummary]


class WaitOutput(BaseModel):
    waiting_on: list[str] = Field(description="Agents still busy")
    all_agents: list[AgentSummary]


def summarize(pool: AgentPool, status: SubAgentStatus | None = None) -> list[AgentSummary]:
    return [AgentSummary.model_validate(i.summary()) for i in pool.list_instances(status)]


# --- Tools ---


@tool(
    "Create a new sub-agent of the given type. The agent starts idle; give it work "
    "with send_to_agent. Use sub-agents to run independent pieces of work in parallel."
)
async def spawn_agent(params: SpawnAgentInput, context: ToolRuntime) -> SpawnAgentOutput:
    pool: AgentPool = context["pool"]
    factory: AgentFactory = context["factory"]
    try:
        agent_id = await pool.spawn(params.type, factory)
    except ValueError as e:
        raise ToolError(str(e)) from e
    return SpawnAgentOutput(agent_id=agent_id, type=params.type, all_agents=summarize(pool))


@tool("List your sub-agents and their status (idle, busy, failed).")
async def list_agents(params: ListAgentsInput, context: ToolRuntime) -> ListAgentsOutput:
    pool: AgentPool = context["pool"]
    return ListAgentsOutput(agents=summarize(pool, params.filter), all_agents=summarize(pool))


@tool(
    "Send a task to an idle sub-agent. Returns immediately; the agent works in the "
    "background and its result arrives as a '[Sub-agent <id> finished]' message. "
    "Call wait when you have nothing else to do."
)
async def send_to_agent(params: SendToAgentInput, context: ToolRuntime) -> SendToAgentOutput:
    pool: AgentPool = context["pool"]
    try:
        pool.send_to(params.agent_id, params.message)
    except PoolError as e:
        raise ToolError(str(e)) from e
    return SendToAgentOutput(
        agent_id=params.agent_id, status=SubAgentStatus.BUSY, all_agents=summarize(pool)
    )


@tool("Close a sub-agent you no longer need. Busy agents are cancelled.")
async def close_agent(params: CloseAgentInput, context: ToolRuntime) -> CloseAgentOutput:
    pool: AgentPool = context["pool"]
    if pool.get(params.agent_id) is None:
        raise ToolError(f"Sub-agent not found: {params.agent_id}")
    await pool.close(params.agent_id, params.reason)
    return CloseAgentOutput(agent_id=params.agent_id, closed=True, all_agents=summarize(pool))


@tool(
    "Pause until one of your busy sub-agents reports back. Only useful after "
    "send_to_agent; fails when no sub-agent is working."
)
async def wait(params: WaitInput, context: ToolRuntime) -> WaitOutput:
    pool: AgentPool = context["pool"]
    if not pool.has_active_agents():
        raise ToolError("No active sub-agents to wait for")
    busy = [i.id for i in pool.list_instances(SubAgentStatus.BUSY)]
    return WaitOutput(waiting_on=busy, all_agents=summarize(pool))


SUB_AGENT_TOOLS = (spawn_agent, list_agents, send_to_agent, close_agent, wait)


# --- Feature ---


class SubAgentLoopHooks(LoopHooks):
    def __init__(self, feature: "SubAgentFeature") -> None:
        self.feature = feature

    @property
    def pool(self) -> AgentPool:
        if self.feature.pool is None:
            raise RuntimeError("The subagent feature has not been initiated")
        return self.feature.pool

    async def after_tool_calls(
        self, log: MessageLog, tool_calls: Sequence[ToolCall], step: int
    ) -> None:
        for message in self.pool.drain_pending():
            log.append(format_delivery(message))

    async def should_wait(self, log: MessageLog, step: int) -> bool:
        return self.pool.has_active_agents()

    async def wait_for_message(self) -> MailMessage | None:
        return await self.pool.wait_for_message()

    async def after_wait(self, message: MailMessage, log: MessageLog, step: int) -> None:
        log.append(format_delivery(message))

    async def before_no_tool_calls(
        self, log: MessageLog, response: ModelResponse, step: int
    ) -> HookResult:
        if not self.pool.has_active_agents():
            return None
        logger.info("Model stopped while sub-agents are active; waiting for them")
        message = await self.pool.wait_for_message()
        log.append(format_delivery(message))
        return CONTINUE


class SubAgentFeature(Feature):
    """Child-agent pool, its tools and the parent's mailbox hooks.

    Args:
        factory: Builds a child agent from a type name. Defaults to the
            built-in ``Basic`` / ``Explorer`` types on the parent's client.
        wait_warning_seconds: Warning interval while waiting on children.
            Defaults to settings; ``None`` or 0 there disables it.
    """

    name = "subagent"

    def __init__(
        self,
        factory: AgentFactory | None = None,
        *,
        wait_warning_seconds: float | None = None,
    ) -> None:
        self.factory = factory
        self.wait_warning_seconds = (
            wait_warning_seconds
            if wait_warning_seconds is not None
            else settings.wait_warning_seconds or None
        )
        self.pool: AgentPool | None = None
        self._hooks = SubAgentLoopHooks(self)

    async def on_initiate(self, ctx: FeatureInitContext) -> None:
        self.pool = AgentPool(owner=ctx.agent, wait_warning_seconds=self.wait_warning_seconds)
        if self.factory is None:
            from tandem.agent.subagents import build_agent_factory

            self.factory = build_agent_factory(ctx.agent.client, sink=ctx.agent.sink)

    def get_tools(self) -> list[Tool]:
        return list(SUB_AGENT_TOOLS)

    def get_context_injectors(self) -> dict[InjectorPattern, ContextInjector]:
        names = "|".join(t.name for t in SUB_AGENT_TOOLS)
        return {
            re.compile(rf"^({names})$"): lambda call: {
                "pool": self.pool,
                "factory": self.factory,
            }
        }

    def get_loop_hooks(self) -> LoopHooks:
        return self._hooks

    async def on_destroy(self) -> None:
        if self.pool is not None:
            await self.pool.shutdown()
