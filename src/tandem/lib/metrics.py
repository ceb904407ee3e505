"""Per-agent tool call metrics.

Every agent owns one ``MetricsCollector`` and its tool executor feeds it
the ``ToolOutcome`` of each call. A child keeps its own collector, so a
parent's summary only covers the tools the parent ran itself.

Usage:
    collector = MetricsCollector()
    collector.record(outcome)
    collector.get("read_file").error_rate       # 0.5
    collector.get_summary()["by_tool"]["read_file"]["last_error"]
"""

import logging
import time
from typing import Any

from pydantic import BaseModel, PrivateAttr, computed_field

from tandem.lib.hooks import ToolOutcome

logger = logging.getLogger(__name__)


class ToolMetrics(BaseModel):
    """Counters and timings for one tool."""

    call_count: int = 0
    error_count: int = 0
    blocked_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float | None = None
    max_duration_ms: float = 0.0
    last_error: str | None = None

    @computed_field
    @property
    def avg_duration_ms(self) -> float:
        if self.call_count == 0:
            return 0.0
        return round(self.total_duration_ms / self.call_count, 2)

    @computed_field
    @property
    def error_rate(self) -> float:
        """Fraction of calls that failed, blocked calls included."""
        if self.call_count == 0:
            return 0.0
        return round(self.error_count / self.call_count, 3)

    def add(self, outcome: ToolOutcome) -> None:
        duration = outcome.duration_ms
        self.call_count += 1
        self.total_duration_ms += duration
        self.max_duration_ms = max(self.max_duration_ms, duration)
        if self.min_duration_ms is None or duration < self.min_duration_ms:
            self.min_duration_ms = duration
        if outcome.blocked:
            self.blocked_count += 1
        if not outcome.success:
            self.error_count += 1
            self.last_error = outcome.error


class MetricsCollector(BaseModel):
    """Tool metrics for one agent, keyed by tool name.

    Args:
        agent_id: Used in the logged summary line.
    """

    agent_id: str = "main"

    _by_tool: dict[str, ToolMetrics] = PrivateAttr(default_factory=dict)
    _started: float = PrivateAttr(default_factory=time.monotonic)

    def record(self, outcome: ToolOutcome) -> None:
        self._by_tool.setdefault(outcome.tool_name, ToolMetrics()).add(outcome)

    def get(self, tool_name: str) -> ToolMetrics | None:
        return self._by_tool.get(tool_name)

    def get_summary(self) -> dict[str, Any]:
        """Totals plus a per-tool breakdown, JSON-serializable."""
        tools = self._by_tool.values()
        calls = sum(m.call_count for m in tools)
        errors = sum(m.error_count for m in tools)
        return {
            "agent_id": self.agent_id,
            "elapsed_seconds": round(time.monotonic() - self._started, 2),
            "total_tool_calls": calls,
            "total_errors": errors,
            "total_blocked": sum(m.blocked_count for m in tools),
            "total_tool_time_ms": round(sum(m.total_duration_ms for m in tools), 2),
            "by_tool": {
                name: m.model_dump(mode="json") for name, m in sorted(self._by_tool.items())
            },
        }

    def log_summary(self, level: int = logging.INFO) -> None:
        summary = self.get_summary()
        logger.log(
            level,
            "[%s] %d tool calls (%d failed, %d blocked) across %d tools",
            self.agent_id,
            summary["total_tool_calls"],
            summary["total_errors"],
            summary["total_blocked"],
            len(summary["by_tool"]),
        )
        for name, stats in summary["by_tool"].items():
            logger.debug("[%s]   %s: %s", self.agent_id, name, stats)

    def reset(self) -> None:
        self._by_tool.clear()
        self._started = time.monotonic()
