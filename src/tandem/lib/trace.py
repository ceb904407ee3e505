"""Trace logging and console output for agent runs.

``TraceLogger`` is a ``LogSink``: hand it to every agent in a tree and it
prints each new message as it lands in any agent's log, prefixed with the
agent id, while accumulating a markdown trace for later review.

Tool calls and their results are linked by color: when an assistant
message requests a tool, the call id gets the next color of a rotating
palette; the tool message answering it is printed in the same color.

Examples:
    Attach a trace to an agent and save it after the run::

        >>> trace = TraceLogger(trace_path=Path("traces/run.md"), title="demo")
        >>> agent = Agent(client, sink=trace)
        >>> await agent.on_call("hello")
        >>> trace.save()
        PosixPath('traces/run.md')
"""

from __future__ import annotations

import itertools
import json
import logging
from collections.abc import Iterator, Sequence
from datetime import datetime
from pathlib import Path
from typing import TypeAlias

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from rich.console import Console

from tandem.lib.messages import Message

logger = logging.getLogger(__name__)

JsonValue: TypeAlias = (
    "str | int | float | bool | None | list[JsonValue] | dict[str, JsonValue]"
)

TOOL_COLORS = [
    "cyan",
    "green",
    "yellow",
    "magenta",
    "blue",
    "red",
    "bright_cyan",
    "bright_green",
    "bright_yellow",
    "bright_magenta",
    "bright_blue",
    "bright_red",
]

ROLE_EMOJI = {"system": "⚙️", "user": "👤", "assistant": "💬", "tool": "📋"}


def truncate_str(value: str, max_len: int = 500) -> str:
    """Truncate a string to max_len, appending '...' if trimmed."""
    if len(value) > max_len:
        return value[:max_len] + "..."
    return value


def truncate_str_fields(obj: JsonValue, max_len: int = 500) -> JsonValue:
    """Recursively truncate string values in a JSON-like structure."""
    match obj:
        case dict() as d:
            return {k: truncate_str_fields(v, max_len) for k, v in d.items()}
        case list() as items:
            return [truncate_str_fields(item, max_len) for item in items]
        case str() as s:
            return truncate_str(s, max_len)
        case _:
            return obj


def format_tool_result(content: str, max_len: int = 500) -> str:
    """Pretty-print a JSON tool result with long strings truncated."""
    try:
        parsed = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return truncate_str(content, max_len)
    return json.dumps(truncate_str_fields(parsed, max_len), indent=2, ensure_ascii=False)


def format_message_markdown(agent_id: str, message: Message) -> str:
    """Format a message as a markdown trace section."""
    header = f"## {ROLE_EMOJI.get(message.role, '❓')} [{agent_id}] {message.role}"
    parts = [header, ""]
    if message.reasoning:
        parts += ["> " + line for line in message.reasoning.splitlines()] + [""]
    if message.role == "tool":
        parts += [f"Result for `{message.tool_call_id}`:", "", "```json", message.content, "```"]
    elif message.content:
        parts.append(message.content)
    for call in message.tool_calls:
        parts += [
            "",
            f"### 🔧 {call.name} `{call.id}`",
            "",
            "```json",
            json.dumps(call.arguments, indent=2, ensure_ascii=False),
            "```",
        ]
    return "\n".join(parts) + "\n"


class TraceEntry(BaseModel):
    """A single indexed entry in a trace."""

    index: int = Field(description="0-based entry index")
    timestamp: str = Field(description="ISO timestamp when entry was logged")
    agent_id: str | None = Field(default=None, description="Agent that produced it")
    content: str = Field(description="Markdown content for this entry")


class TraceLogger(BaseModel):
    """Console printer and markdown accumulator for one run.

    Args:
        trace_path: Where ``save`` writes the markdown trace.
        title: Title for the trace header.
        echo: Print new messages to the console as they arrive.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    trace_path: Path = Field(description="Path to save the trace file")
    title: str = Field(description="Title for the trace")
    echo: bool = True
    entries: list[TraceEntry] = Field(default_factory=list)

    _seen: dict[str, int] = PrivateAttr(default_factory=dict)
    _colors: dict[str, str] = PrivateAttr(default_factory=dict)
    _palette: Iterator[str] = PrivateAttr(
        default_factory=lambda: itertools.cycle(TOOL_COLORS)
    )
    _console: Console = PrivateAttr(
        default_factory=lambda: Console(highlight=False, markup=False)
    )

    def model_post_init(self, _context: object) -> None:
        if not self.entries:
            self.append_entry(
                f"# Trace: {self.title}\n\n*Generated: {datetime.now().isoformat()}*\n"
            )

    # -------------------------------------------------------------------------
    # LogSink
    # -------------------------------------------------------------------------

    def push_messages(self, agent_id: str, messages: Sequence[Message]) -> None:
        """Record the messages appended since the last push for this agent."""
        start = self._seen.get(agent_id, 0)
        if start > len(messages):
            # Log was replaced (reset or load); start over.
            start = 0
        for message in messages[start:]:
            if self.echo:
                self.print_message(agent_id, message)
            self.append_entry(format_message_markdown(agent_id, message), agent_id)
        self._seen[agent_id] = len(messages)

    # -------------------------------------------------------------------------
    # Console
    # -------------------------------------------------------------------------

    def print_message(self, agent_id: str, message: Message) -> None:
        prefix = f"[{agent_id}] "
        emoji = ROLE_EMOJI.get(message.role, "❓")

        if message.role == "tool" and message.tool_call_id:
            color = self._colors.pop(message.tool_call_id, "default")
            self._console.print(f"{prefix}{emoji} Result ", end="")
            self._console.print(f"[{message.tool_call_id}]", style=color)
            self._console.print(format_tool_result(message.content))
            return

        if message.reasoning:
            self._console.print(f"{prefix}💭 {truncate_str(message.reasoning)}", style="dim")
        if message.content:
            self._console.print(f"{prefix}{emoji} {message.content}")
        for call in message.tool_calls:
            color = next(self._palette)
            self._colors[call.id] = color
            self._console.print(f"{prefix}🔧 Tool: {call.name} ", end="")
            self._console.print(f"[{call.id}]", style=color)
            if call.arguments:
                self._console.print(json.dumps(call.arguments, indent=2, ensure_ascii=False))

    # -------------------------------------------------------------------------
    # Trace accumulation
    # -------------------------------------------------------------------------

    def append_entry(self, content: str, agent_id: str | None = None) -> None:
        self.entries.append(
            TraceEntry(
                index=len(self.entries),
                timestamp=datetime.now().isoformat(),
                agent_id=agent_id,
                content=content,
            )
        )

    def log_text(self, text: str, heading: str | None = None) -> None:
        """Add raw text to the trace."""
        if heading:
            self.append_entry(f"## {heading}\n\n{text}\n")
        else:
            self.append_entry(f"{text}\n")

    def read_entries(
        self,
        after_n: int | None = None,
        before_n: int | None = None,
    ) -> list[TraceEntry]:
        """Slice entries by index. Supports negative indexing."""
        return self.entries[after_n:before_n]

    def render(self) -> str:
        return "\n".join(entry.content for entry in self.entries)

    def save(self) -> Path:
        """Write accumulated trace to file."""
        self.trace_path.parent.mkdir(parents=True, exist_ok=True)
        self.trace_path.write_text(self.render(), encoding="utf-8")
        logger.info("Saved trace to %s", self.trace_path)
        return self.trace_path
