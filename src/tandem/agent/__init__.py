"""The agent built on the ``tandem.lib`` runtime.

- core.py: Agent facade and ``run_agent``
- client.py: OpenAI-compatible chat client
- config.py: Configuration via pydantic-settings
- models.py: Session result model
- prompts.py: System prompts for the main agent and child types
- subagents.py: Child agent types and the pool factory
- features/: context, todo and sub-agent features
"""
