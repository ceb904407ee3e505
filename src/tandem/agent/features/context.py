"""Context feature: an enriched, indexed mirror of the message log.

Each message that lands in the agent's log is wrapped in a
``ContextRecord`` carrying a sequence number, the step it was seen in, a
timestamp, classification tags and values parsed out of it (tool names,
task ids, the sub-agent that produced it). Records are indexed by tool
name and task id, and ``query()`` returns a chainable ``ContextQuery``.

Other features reach it through ``FeatureInitContext.get_feature("context")``
after declaring ``dependencies = ("context",)``.

Examples:
    Find the last time a todo tool was called::

        >>> context = ctx.get_feature("context")
        >>> context.query().by_tool("task_update").last()

    Count tool calls per tool in the last two steps::

        >>> context.query().in_steps(context.step - 1).group_by_tool()
        {'read_file': 3, 'task_update': 1}
"""

import enum
import json
import logging
import re
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any, Self

from pydantic import BaseModel, Field

from tandem.lib.features import Feature, FeatureInitContext, LoopHooks
from tandem.lib.hooks import (
    HookResult,
    StepContext,
    StepFinishedContext,
    ToolFinishedContext,
)
from tandem.lib.messages import Message, MessageLog, Role

logger = logging.getLogger(__name__)

TASK_ID_PATTERN = re.compile(r"""["']task_?[iI]d["']\s*:\s*["']([^"']+)["']""")
SUB_AGENT_PATTERN = re.compile(r"^\[Sub-agent (\S+) finished\]")
REMINDER_PREFIX = "<system-reminder>"


class MessageTag(enum.StrEnum):
    USER = "user"
    SYSTEM = "system"
    ASSISTANT = "assistant"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"
    SUB_AGENT = "sub-agent"
    REMINDER = "reminder"


class ContextRecord(BaseModel):
    """A log message plus the metadata the context feature derived for it."""

    id: str
    sequence: int
    step: int
    timestamp: datetime
    message: Message
    tags: list[MessageTag] = Field(default_factory=list)
    tool_names: list[str] = Field(default_factory=list)
    task_ids: list[str] = Field(default_factory=list)
    agent_id: str | None = Field(
        default=None, description="Sub-agent that produced the message, if any"
    )
    source: str | None = Field(
        default=None, description="Tool name for tool results"
    )

    @property
    def role(self) -> Role:
        return self.message.role

    @property
    def content(self) -> str:
        return self.message.content


class ContextQuery:
    """Chainable filter over context records. Filters narrow the current result."""

    def __init__(
        self, records: Iterable[ContextRecord], indexes: dict[str, set[str]]
    ) -> None:
        self._result = list(records)
        self._indexes = indexes

    def by_role(self, *roles: Role) -> Self:
        self._result = [r for r in self._result if r.role in roles]
        return self

    def by_tag(self, *tags: MessageTag) -> Self:
        self._result = [r for r in self._result if any(t in r.tags for t in tags)]
        return self

    def _by_index(self, key: str) -> Self:
        ids = self._indexes.get(key, set())
        self._result = [r for r in self._result if r.id in ids]
        return self

    def by_tool(self, name: str) -> Self:
        """Assistant messages that called ``name``."""
        return self._by_index(f"tool:{name}")

    def by_task(self, task_id: str) -> Self:
        return self._by_index(f"task:{task_id}")

    def by_agent_id(self, agent_id: str) -> Self:
        self._result = [r for r in self._result if r.agent_id == agent_id]
        return self

    def since(self, timestamp: datetime) -> Self:
        self._result = [r for r in self._result if r.timestamp >= timestamp]
        return self

    def in_steps(self, start: int, end: int | None = None) -> Self:
        """Records seen in steps ``start`` through ``end`` inclusive (open-ended if None)."""
        self._result = [
            r for r in self._result if r.step >= start and (end is None or r.step <= end)
        ]
        return self

    def containing(self, text: str, *, case_sensitive: bool = True) -> Self:
        if case_sensitive:
            self._result = [r for r in self._result if text in r.content]
        else:
            needle = text.lower()
            self._result = [r for r in self._result if needle in r.content.lower()]
        return self

    def recent(self, n: int) -> Self:
        self._result = self._result[-n:] if n > 0 else []
        return self

    # -------------------------------------------------------------------------
    # Terminal operations
    # -------------------------------------------------------------------------

    def all(self) -> list[ContextRecord]:
        return list(self._result)

    def first(self) -> ContextRecord | None:
        return self._result[0] if self._result else None

    def last(self) -> ContextRecord | None:
        return self._result[-1] if self._result else None

    def count(self) -> int:
        return len(self._result)

    def tool_names(self) -> list[str]:
        return [name for r in self._result for name in r.tool_names]

    def time_span(self) -> timedelta:
        if not self._result:
            return timedelta(0)
        return self._result[-1].timestamp - self._result[0].timestamp

    def group_by_tool(self) -> dict[str, int]:
        counts: dict[str, int] = defaultdict(int)
        for name in self.tool_names():
            counts[name] += 1
        return dict(counts)


def infer_tags(message: Message) -> list[MessageTag]:
    match message.role:
        case "user":
            return [MessageTag.USER]
        case "system" if message.content.startswith(REMINDER_PREFIX):
            return [MessageTag.SYSTEM, MessageTag.REMINDER]
        case "system":
            return [MessageTag.SYSTEM]
        case "assistant":
            tags = [MessageTag.ASSISTANT]
            if message.tool_calls:
                tags.append(MessageTag.TOOL_CALL)
            if SUB_AGENT_PATTERN.match(message.content):
                tags.append(MessageTag.SUB_AGENT)
            return tags
        case _:
            return [MessageTag.TOOL_RESULT]


def parse_task_ids(message: Message) -> list[str]:
    texts = [message.content]
    texts += [json.dumps(call.arguments) for call in message.tool_calls]
    found: list[str] = []
    for text in texts:
        for task_id in TASK_ID_PATTERN.findall(text):
            if task_id not in found:
                found.append(task_id)
    return found


class _ContextLoopHooks(LoopHooks):
    def __init__(self, feature: "ContextFeature") -> None:
        self.feature = feature

    async def on_step_start(self, ctx: StepContext) -> HookResult:
        self.feature.step += 1
        self.feature.sync(ctx.log)
        return None

    async def on_tool_finished(self, ctx: ToolFinishedContext) -> HookResult:
        self.feature.sync(ctx.log)
        return None

    async def on_step_finished(self, ctx: StepFinishedContext) -> HookResult:
        self.feature.sync(ctx.log)
        return None


class ContextFeature(Feature):
    """Indexes the agent's log and answers structured queries about it.

    ``step`` counts steps across every call of the agent, starting at 0 on
    the first step of the first call.
    """

    name = "context"

    def __init__(self) -> None:
        self.records: list[ContextRecord] = []
        self.indexes: dict[str, set[str]] = defaultdict(set)
        self.step = -1
        self.agent_id = "main"
        self._log: MessageLog | None = None
        self._tool_by_call_id: dict[str, str] = {}
        self._hooks = _ContextLoopHooks(self)

    async def on_initiate(self, ctx: FeatureInitContext) -> None:
        self.agent_id = ctx.agent_id

    def get_loop_hooks(self) -> LoopHooks:
        return self._hooks

    async def on_destroy(self) -> None:
        self.clear()

    # -------------------------------------------------------------------------
    # Ingest
    # -------------------------------------------------------------------------

    def sync(self, log: MessageLog) -> None:
        """Enrich every log message not seen yet. A shorter log means it was replaced."""
        if self._log is not log or len(log) < len(self.records):
            if self.records:
                logger.debug("Context for %s: log replaced, rebuilding", self.agent_id)
            self.clear(keep_step=True)
            self._log = log
        for message in log.messages[len(self.records) :]:
            self.feed(message)

    def feed(self, message: Message) -> ContextRecord:
        sequence = len(self.records)
        for call in message.tool_calls:
            self._tool_by_call_id[call.id] = call.name

        sub_agent = SUB_AGENT_PATTERN.match(message.content) if message.role == "assistant" else None
        record = ContextRecord(
            id=f"{self.agent_id}:{sequence}",
            sequence=sequence,
            step=max(self.step, 0),
            timestamp=datetime.now(),
            message=message,
            tags=infer_tags(message),
            tool_names=[call.name for call in message.tool_calls],
            task_ids=parse_task_ids(message),
            agent_id=sub_agent.group(1) if sub_agent else None,
            source=(
                self._tool_by_call_id.get(message.tool_call_id)
                if message.tool_call_id
                else None
            ),
        )
        self.records.append(record)
        for name in record.tool_names:
            self.indexes[f"tool:{name}"].add(record.id)
        for task_id in record.task_ids:
            self.indexes[f"task:{task_id}"].add(record.id)
        return record

    def clear(self, *, keep_step: bool = False) -> None:
        self.records = []
        self.indexes = defaultdict(set)
        self._tool_by_call_id = {}
        self._log = None
        if not keep_step:
            self.step = -1

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------

    def query(self) -> ContextQuery:
        if self._log is not None:
            self.sync(self._log)
        return ContextQuery(self.records, self.indexes)

    def summary(self) -> dict[str, Any]:
        query = self.query()
        return {
            "messages": query.count(),
            "steps": self.step + 1,
            "tools": query.group_by_tool(),
        }

    def __len__(self) -> int:
        return len(self.records)
