"""Tests for per-agent tool metrics."""

from tandem.lib.hooks import ToolOutcome
from tandem.lib.metrics import MetricsCollector


def outcome(name: str, duration_ms: float, **fields: object) -> ToolOutcome:
    return ToolOutcome(
        call_id="c", tool_name=name, success=True, duration_ms=duration_ms
    ).model_copy(update=fields)


class TestMetricsCollector:
    def test_counts_and_timings(self) -> None:
        metrics = MetricsCollector(agent_id="Basic_1")
        metrics.record(outcome("read", 10.0))
        metrics.record(outcome("read", 30.0, success=False, error="missing file"))
        metrics.record(outcome("write", 5.0, success=False, blocked=True, error="denied"))

        read = metrics.get("read")
        assert read is not None
        assert read.call_count == 2
        assert read.min_duration_ms == 10.0
        assert read.max_duration_ms == 30.0
        assert read.avg_duration_ms == 20.0
        assert read.error_rate == 0.5
        assert read.last_error == "missing file"
        assert metrics.get("unused") is None

    def test_summary(self) -> None:
        metrics = MetricsCollector(agent_id="Basic_1")
        metrics.record(outcome("write", 5.0, success=False, blocked=True, error="denied"))

        summary = metrics.get_summary()

        assert summary["agent_id"] == "Basic_1"
        assert summary["total_tool_calls"] == 1
        assert summary["total_blocked"] == 1
        assert summary["by_tool"]["write"]["error_rate"] == 1.0
        assert summary["by_tool"]["write"]["avg_duration_ms"] == 5.0

    def test_reset(self) -> None:
        metrics = MetricsCollector()
        metrics.record(outcome("read", 1.0))

        metrics.reset()

        assert metrics.get_summary()["by_tool"] == {}
