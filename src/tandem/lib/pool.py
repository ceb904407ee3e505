"""Sub-agent pool: child instances, their status machine and the mailbox.

Children are addressed by ``<type>_<n>`` ids, where ``n`` comes from a
per-type counter that only ever increases. A child moves through:

    idle --send_to--> busy --success--> idle
                           --error----> failed   (rejects further dispatch)
    any  --close----> terminated (removed from the pool)

``send_to`` flips the child to busy before returning and runs its call in
a background task, so the caller never waits on the child. A successful
call is ``report``-ed into the mailbox; a failed call is NOT enqueued and
only surfaces through ``on_sub_agent_update`` on the owner.

Mailbox delivery: each reported message goes to exactly one waiter. A
waiter registered for that specific agent wins over generic waiters;
generic waiters are served first come, first served. With no waiter the
message stays queued until ``wait_for_message`` or ``drain_pending``.

All mailbox mutations happen without an ``await`` between the check and
the update, so they are atomic under the event loop.

Examples:
    Spawn a child, dispatch work and collect the result::

        >>> pool = AgentPool(owner=parent)
        >>> agent_id = await pool.spawn("Explorer", factory)
        >>> agent_id
        'Explorer_1'
        >>> pool.send_to(agent_id, "List the files under src/")
        >>> mail = await pool.wait_for_message()
        >>> mail.agent_id
        'Explorer_1'
"""

import asyncio
import enum
import inspect
import logging
import time
import weakref
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol, TypeAlias

from pydantic import BaseModel, ConfigDict, PrivateAttr

from tandem.lib.hooks import (
    LifecycleHooks,
    SubAgentDestroyContext,
    SubAgentInterruptContext,
    SubAgentSpawnContext,
    SubAgentUpdateContext,
)

logger = logging.getLogger(__name__)


class SubAgentStatus(enum.StrEnum):
    IDLE = "idle"
    BUSY = "busy"
    FAILED = "failed"
    TERMINATED = "terminated"


class PoolError(Exception):
    """Base class for pool dispatch errors."""


class UnknownAgentError(PoolError):
    """No child with the given id exists in the pool."""


class AgentBusyError(PoolError):
    """The child is already running a call."""


class AgentFailedError(PoolError):
    """The child failed earlier and no longer accepts work."""


class MailMessage(BaseModel):
    """A result delivered from a child to its parent."""

    agent_id: str
    message: str


class PooledAgent(Protocol):
    """What the pool needs from a child agent."""

    parent_handle: "PoolHandle | None"

    async def on_call(self, input: str) -> str: ...

    async def dispose(self) -> None: ...


AgentFactory: TypeAlias = Callable[[str], PooledAgent | Awaitable[PooledAgent]]


class SubAgentInstance(BaseModel):
    """Book-keeping for one child."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    type: str
    agent: Any
    status: SubAgentStatus = SubAgentStatus.IDLE
    created_at: datetime
    completed_at: datetime | None = None
    result: str | None = None
    error: str | None = None

    _task: asyncio.Task[None] | None = PrivateAttr(default=None)
    _dispatch: int = PrivateAttr(default=0)
    _interrupted_dispatch: int = PrivateAttr(default=-1)

    def summary(self) -> dict[str, Any]:
        return {
            "agent_id": self.id,
            "type": self.type,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "result": self.result,
            "error": self.error,
        }


class PoolHandle:
    """Non-owning back-reference from a child to the pool that owns it.

    Holds the pool weakly: once the parent drops its pool the handle
    resolves to ``None`` instead of keeping the tree alive.
    """

    def __init__(self, pool: "AgentPool", agent_id: str) -> None:
        self._pool = weakref.ref(pool)
        self.agent_id = agent_id

    @property
    def pool(self) -> "AgentPool | None":
        return self._pool()

    async def handle_interrupt(self, reason: str, result: str) -> None:
        pool = self.pool
        if pool is None:
            logger.debug("Pool for %s is gone; dropping interrupt", self.agent_id)
            return
        await pool.handle_interrupt(self.agent_id, reason, result)


class AgentPool:
    """Creates, dispatches, monitors and reclaims child agents.

    Args:
        owner: Parent hooks receiving spawn/update/destroy/interrupt
            notifications.
        wait_warning_seconds: Log a warning this often while
            ``wait_for_message`` is suspended. ``None`` or ``0`` disables it. The
            wait itself never times out.
    """

    def __init__(
        self,
        owner: LifecycleHooks | None = None,
        *,
        wait_warning_seconds: float | None = 300.0,
    ) -> None:
        self.owner = owner
        # 0 or less disables the warning like None
        self.wait_warning_seconds = (
            wait_warning_seconds if wait_warning_seconds and wait_warning_seconds > 0 else None
        )
        self._instances: dict[str, SubAgentInstance] = {}
        self._counters: dict[str, int] = {}
        self._pending: dict[str, deque[str]] = {}
        self._agent_waiters: dict[str, deque[asyncio.Future[MailMessage]]] = {}
        self._generic_waiters: deque[asyncio.Future[MailMessage]] = deque()
        self._tasks: set[asyncio.Task[None]] = set()

    # -------------------------------------------------------------------------
    # Instances
    # -------------------------------------------------------------------------

    async def spawn(self, type: str, factory: AgentFactory) -> str:
        """Create a child of ``type`` in the idle state and return its id."""
        count = self._counters.get(type, 0) + 1
        self._counters[type] = count
        agent_id = f"{type}_{count}"

        agent = factory(type)
        if inspect.isawaitable(agent):
            agent = await agent
        agent.parent_handle = PoolHandle(self, agent_id)

        instance = SubAgentInstance(
            id=agent_id, type=type, agent=agent, created_at=datetime.now()
        )
        self._instances[agent_id] = instance
        logger.info("Spawned sub-agent %s", agent_id)

        if self.owner is not None:
            await self.owner.on_sub_agent_spawn(
                SubAgentSpawnContext(
                    agent_id=agent_id, type=type, created_at=instance.created_at
                )
            )
        return agent_id

    def get(self, agent_id: str) -> SubAgentInstance | None:
        return self._instances.get(agent_id)

    def list_instances(
        self, status: SubAgentStatus | None = None
    ) -> list[SubAgentInstance]:
        instances = list(self._instances.values())
        if status is None:
            return instances
        return [i for i in instances if i.status == status]

    def send_to(self, agent_id: str, message: str) -> None:
        """Start ``message`` on the child without waiting for it.

        Raises:
            UnknownAgentError: No such child.
            AgentBusyError: The child is already running.
            AgentFailedError: The child failed earlier.
        """
        instance = self._instances.get(agent_id)
        if instance is None:
            raise UnknownAgentError(f"Sub-agent not found: {agent_id}")
        match instance.status:
            case SubAgentStatus.BUSY:
                raise AgentBusyError(f"Sub-agent {agent_id} is busy")
            case SubAgentStatus.FAILED:
                raise AgentFailedError(f"Sub-agent {agent_id} failed: {instance.error}")

        instance.status = SubAgentStatus.BUSY
        instance._dispatch += 1
        logger.debug("Dispatching to %s: %.80s", agent_id, message)

        task = asyncio.create_task(
            self._run(instance, message, instance._dispatch),
            name=f"sub-agent:{agent_id}",
        )
        instance._task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, instance: SubAgentInstance, message: str, dispatch: int) -> None:
        try:
            result = await instance.agent.on_call(message)
        except Exception as e:
            logger.warning("Sub-agent %s failed: %s", instance.id, e)
            old_status = instance.status
            instance.status = SubAgentStatus.FAILED
            instance.error = str(e) or type(e).__name__
            instance.completed_at = datetime.now()
            await self._notify_update(
                SubAgentUpdateContext(
                    agent_id=instance.id,
                    type=instance.type,
                    old_status=old_status,
                    new_status=SubAgentStatus.FAILED,
                    error=instance.error,
                )
            )
            return

        if instance._dispatch != dispatch or instance.status is SubAgentStatus.TERMINATED:
            return

        old_status = instance.status
        instance.status = SubAgentStatus.IDLE
        instance.result = result
        instance.completed_at = datetime.now()
        if instance._interrupted_dispatch != dispatch:
            self.report(instance.id, result)
        logger.info("Sub-agent %s finished", instance.id)

        await self._notify_update(
            SubAgentUpdateContext(
                agent_id=instance.id,
                type=instance.type,
                old_status=old_status,
                new_status=SubAgentStatus.IDLE,
                result=result,
            )
        )

    async def _notify_update(self, ctx: SubAgentUpdateContext) -> None:
        if self.owner is None:
            return
        # Runs inside a background task with no caller to raise into.
        try:
            await self.owner.on_sub_agent_update(ctx)
        except Exception:
            logger.exception("on_sub_agent_update failed for %s", ctx.agent_id)

    async def close(self, agent_id: str, reason: str = "manual") -> None:
        """Dispose a child, mark it terminated and remove it from the pool."""
        instance = self._instances.pop(agent_id, None)
        if instance is None:
            return
        instance.status = SubAgentStatus.TERMINATED

        task = instance._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

        await instance.agent.dispose()
        logger.info("Closed sub-agent %s (%s)", agent_id, reason)

        if self.owner is not None:
            await self.owner.on_sub_agent_destroy(
                SubAgentDestroyContext(agent_id=agent_id, type=instance.type, reason=reason)
            )

    async def shutdown(self) -> None:
        """Close every child with reason ``parent_dispose``."""
        await asyncio.gather(
            *(self.close(agent_id, "parent_dispose") for agent_id in list(self._instances))
        )

    async def handle_interrupt(self, agent_id: str, reason: str, result: str) -> None:
        """Relay a child's interrupted call to the parent as a normal result."""
        instance = self._instances.get(agent_id)
        if instance is None:
            return
        instance.status = SubAgentStatus.IDLE
        instance.result = result
        instance._interrupted_dispatch = instance._dispatch
        self.report(agent_id, result)
        logger.info("Sub-agent %s interrupted (%s)", agent_id, reason)

        if self.owner is not None:
            await self.owner.on_sub_agent_interrupt(
                SubAgentInterruptContext(
                    agent_id=agent_id, type=instance.type, reason=reason, result=result
                )
            )

    # -------------------------------------------------------------------------
    # Mailbox
    # -------------------------------------------------------------------------

    def report(self, agent_id: str, message: str) -> None:
        """Enqueue a child's message and wake at most one waiter."""
        self._pending.setdefault(agent_id, deque()).append(message)

        waiters = self._agent_waiters.get(agent_id)
        while waiters:
            waiter = waiters.popleft()
            if not waiter.done():
                waiter.set_result(self._take(agent_id))
                return

        while self._generic_waiters:
            waiter = self._generic_waiters.popleft()
            if not waiter.done():
                waiter.set_result(self._take_any())
                return

    def _take(self, agent_id: str) -> MailMessage:
        queue = self._pending[agent_id]
        message = queue.popleft()
        if not queue:
            del self._pending[agent_id]
        return MailMessage(agent_id=agent_id, message=message)

    def _take_any(self) -> MailMessage:
        return self._take(next(iter(self._pending)))

    def has_pending_messages(self) -> bool:
        return bool(self._pending)

    def has_active_agents(self) -> bool:
        """True if mail is queued or any child is busy."""
        if self._pending:
            return True
        return any(i.status is SubAgentStatus.BUSY for i in self._instances.values())

    def drain_pending(self) -> list[MailMessage]:
        """Take every queued message, grouped by agent in first-report order."""
        drained = [
            MailMessage(agent_id=agent_id, message=message)
            for agent_id, queue in self._pending.items()
            for message in queue
        ]
        self._pending.clear()
        return drained

    async def wait_for_message(self, agent_id: str | None = None) -> MailMessage:
        """Return the next queued message, suspending until one is reported.

        Args:
            agent_id: Only accept a message from this child.
        """
        if agent_id is None and self._pending:
            return self._take_any()
        if agent_id is not None and agent_id in self._pending:
            return self._take(agent_id)

        future: asyncio.Future[MailMessage] = asyncio.get_running_loop().create_future()
        if agent_id is None:
            self._generic_waiters.append(future)
        else:
            self._agent_waiters.setdefault(agent_id, deque()).append(future)

        try:
            return await self._await_with_warning(future, agent_id)
        finally:
            if not future.done():
                future.cancel()
            self._discard_waiter(future, agent_id)

    async def _await_with_warning(
        self, future: asyncio.Future[MailMessage], agent_id: str | None
    ) -> MailMessage:
        if not self.wait_warning_seconds:
            return await future
        started = time.monotonic()
        while True:
            try:
                return await asyncio.wait_for(
                    asyncio.shield(future), self.wait_warning_seconds
                )
            except TimeoutError:
                busy = [i.id for i in self.list_instances(SubAgentStatus.BUSY)]
                logger.warning(
                    "Still waiting for %s after %.0fs (busy: %s)",
                    agent_id or "any sub-agent",
                    time.monotonic() - started,
                    ", ".join(busy) or "none",
                )

    def _discard_waiter(
        self, future: asyncio.Future[MailMessage], agent_id: str | None
    ) -> None:
        if agent_id is None:
            if future in self._generic_waiters:
                self._generic_waiters.remove(future)
            return
        waiters = self._agent_waiters.get(agent_id)
        if waiters is not None:
            if future in waiters:
                waiters.remove(future)
            if not waiters:
                del self._agent_waiters[agent_id]
