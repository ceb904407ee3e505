"""Result models for agent sessions."""

from typing import Any

from pydantic import BaseModel, Field


class SessionResult(BaseModel):
    """Complete result of one ``run_agent`` session.

    Holds what is needed to compare runs: the final response, whether the
    call finished on its own, timing and per-tool metrics.
    """

    session_id: str
    agent_version: str = Field(
        default="", description="Agent version that produced this result"
    )
    timestamp: str
    task: str
    response: str
    completed: bool = Field(description="False when the step limit interrupted the call")
    steps: int
    duration_seconds: float | None = None
    tool_metrics: dict[str, Any] | None = None
