"""Runtime library for hook-driven agents.

This package contains reusable, **parametric** abstractions that work
out of the box and are configured through constructor arguments. The
concrete agent, its model client and its built-in features belong in
tandem.agent.

Modules:
- messages: Message model and the append-only MessageLog
- hooks: Hook results, merge precedence, error policies, lifecycle hooks
- tools: Tool definition, @tool decorator and ToolRegistry
- features: Feature base class, loop hooks, dependency ordering
- executor: Runs tool calls and writes their outcomes to the log
- loop: The step loop (LoopRunner)
- pool: AgentPool of child agents with a delivery mailbox
- metrics: Per-tool call tracking
- trace: Console printing and markdown traces (a LogSink)
- history: Session snapshot storage and retrieval
- retry: Retry decorator for model endpoint calls
- throttle: Process-wide request throttling
"""

from tandem.lib.executor import ToolExecutor, format_outcome
from tandem.lib.features import (
    Feature,
    FeatureDependencyError,
    FeatureInitContext,
    LoopHooks,
    resolve_order,
)
from tandem.lib.history import list_sessions, load_latest_session, save_session
from tandem.lib.hooks import (
    ALLOW,
    CONTINUE,
    END,
    Allow,
    Block,
    Continue,
    End,
    HookErrorPolicy,
    HookResult,
    LifecycleHooks,
    merge_results,
)
from tandem.lib.loop import LoopResult, LoopRunner, ModelClient
from tandem.lib.messages import LogSnapshot, Message, MessageLog, ModelResponse, ToolCall
from tandem.lib.metrics import MetricsCollector, ToolMetrics
from tandem.lib.pool import AgentPool, MailMessage, PoolError, SubAgentStatus
from tandem.lib.retry import with_retry
from tandem.lib.throttle import Throttle
from tandem.lib.tools import Tool, ToolError, ToolRegistry, tool
from tandem.lib.trace import TraceEntry, TraceLogger

__all__ = [
    # Executor
    "ToolExecutor",
    "format_outcome",
    # Features
    "Feature",
    "FeatureDependencyError",
    "FeatureInitContext",
    "LoopHooks",
    "resolve_order",
    # History
    "list_sessions",
    "load_latest_session",
    "save_session",
    # Hooks
    "ALLOW",
    "CONTINUE",
    "END",
    "Allow",
    "Block",
    "Continue",
    "End",
    "HookErrorPolicy",
    "HookResult",
    "LifecycleHooks",
    "merge_results",
    # Loop
    "LoopResult",
    "LoopRunner",
    "ModelClient",
    # Messages
    "LogSnapshot",
    "Message",
    "MessageLog",
    "ModelResponse",
    "ToolCall",
    # Metrics
    "MetricsCollector",
    "ToolMetrics",
    # Pool
    "AgentPool",
    "MailMessage",
    "PoolError",
    "SubAgentStatus",
    # Retry
    "with_retry",
    # Throttle
    "Throttle",
    # Tools
    "Tool",
    "ToolError",
    "ToolRegistry",
    "tool",
    # Trace
    "TraceEntry",
    "TraceLogger",
]
