"""Conversation messages and the append-only message log.

Every agent owns exactly one ``MessageLog``. Messages are frozen once
appended; the only mutation a log supports is appending at the end, so
anything that holds an index into it stays valid for the life of the log.

An optional ``LogSink`` observes every append. Sinks are for display and
tracing only: an exception raised by a sink is logged and swallowed so
observability can never change the outcome of a call.

Examples:
    Build a log and round-trip it through a snapshot::

        >>> log = MessageLog()
        >>> log.append(Message.user("hello"))
        >>> log.append(Message.assistant("hi there"))
        >>> restored = MessageLog.loads(log.dumps())
        >>> [m.role for m in restored]
        ['user', 'assistant']
"""

import logging
from collections.abc import Iterable, Iterator, Sequence
from typing import Any, Literal, Protocol, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

Role: TypeAlias = Literal["system", "user", "assistant", "tool"]

SNAPSHOT_VERSION = 1


class ToolCall(BaseModel):
    """A single tool invocation requested by the model."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Call identifier, echoed by the outcome message")
    name: str = Field(description="Registered tool name")
    arguments: dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    """One entry of the conversation."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    tool_call_id: str | None = Field(
        default=None, description="Set on tool messages; the call they answer"
    )
    tool_calls: tuple[ToolCall, ...] = Field(
        default=(), description="Set on assistant messages that request tools"
    )
    reasoning: str | None = Field(
        default=None, description="Model reasoning text, when the endpoint returns it"
    )

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Sequence[ToolCall] = (),
        reasoning: str | None = None,
    ) -> "Message":
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls),
            reasoning=reasoning,
        )

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> "Message":
        return cls(role="tool", content=content, tool_call_id=tool_call_id)


class ModelResponse(BaseModel):
    """What a model client returns for one chat request."""

    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    reasoning: str | None = None


class LogSnapshot(BaseModel):
    """Serializable form of a message log."""

    version: int = SNAPSHOT_VERSION
    messages: list[Message] = Field(default_factory=list)


class LogSink(Protocol):
    """Observer notified after every log mutation.

    ``messages`` is the live log; sinks read it and must not keep or mutate it.
    """

    def push_messages(self, agent_id: str, messages: Sequence[Message]) -> None: ...


class SnapshotVersionError(ValueError):
    """Raised when loading a snapshot written by an unknown format version."""


class MessageLog:
    """Append-only ordered record of messages.

    Args:
        messages: Initial messages (e.g. when restoring a snapshot).
        sink: Optional observer called with the full message list after
            every append.
        agent_id: Identifier passed to the sink.
    """

    def __init__(
        self,
        messages: Iterable[Message] = (),
        *,
        sink: LogSink | None = None,
        agent_id: str = "main",
    ) -> None:
        self._messages: list[Message] = list(messages)
        self.sink = sink
        self.agent_id = agent_id

    def append(self, message: Message) -> None:
        """Append one message and notify the sink."""
        self._messages.append(message)
        self._notify()

    def extend(self, messages: Iterable[Message]) -> None:
        """Append several messages with a single sink notification."""
        self._messages.extend(messages)
        self._notify()

    def _notify(self) -> None:
        if self.sink is None:
            return
        try:
            self.sink.push_messages(self.agent_id, self._messages)
        except Exception:
            logger.warning("Log sink failed for agent %s", self.agent_id, exc_info=True)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def snapshot(self) -> LogSnapshot:
        return LogSnapshot(messages=list(self._messages))

    @classmethod
    def from_snapshot(
        cls,
        snapshot: LogSnapshot,
        *,
        sink: LogSink | None = None,
        agent_id: str = "main",
    ) -> "MessageLog":
        """Rebuild a log from a snapshot.

        Raises:
            SnapshotVersionError: If the snapshot format is not supported.
        """
        if snapshot.version != SNAPSHOT_VERSION:
            msg = f"Unsupported log snapshot version: {snapshot.version}"
            raise SnapshotVersionError(msg)
        return cls(snapshot.messages, sink=sink, agent_id=agent_id)

    def dumps(self) -> str:
        return self.snapshot().model_dump_json(indent=2)

    @classmethod
    def loads(cls, data: str | bytes, **kwargs: Any) -> "MessageLog":
        return cls.from_snapshot(LogSnapshot.model_validate_json(data), **kwargs)
