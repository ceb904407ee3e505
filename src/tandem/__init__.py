"""Tool-using agents with composable features and sub-agent pools.

Structure:
- tandem/lib/: parametric runtime, configured only through arguments
  - messages.py: Messages, the append-only log and snapshots
  - hooks.py: Hook results, contexts, error policies and dispatch
  - tools.py: Tools, the registry and the ``tool`` decorator
  - features.py: Feature plugins and dependency ordering
  - executor.py: Single tool-call execution
  - loop.py: The step loop
  - pool.py: Child agents and the mailbox
  - metrics.py, trace.py, history.py, retry.py, throttle.py: support

- tandem/agent/: the agent built on the runtime
  - core.py: Agent facade and ``run_agent``
  - client.py: OpenAI-compatible model client
  - config.py: Settings via pydantic-settings
  - features/: context, todo and sub-agent features
  - prompts.py, subagents.py: system prompts and child agent types

- tandem/environment/cli/: command line entry point
"""
