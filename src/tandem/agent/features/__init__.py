"""Built-in features.

- context: indexed, queryable mirror of the message log
- todo: task list tools and a reminder to use them (needs ``context``)
- subagent: child agent pool, its tools and mailbox hooks
"""

from tandem.agent.features.context import (
    ContextFeature,
    ContextQuery,
    ContextRecord,
    MessageTag,
)
from tandem.agent.features.subagent import SubAgentFeature
from tandem.agent.features.todo import Task, TaskStore, TodoFeature

__all__ = [
    "ContextFeature",
    "ContextQuery",
    "ContextRecord",
    "MessageTag",
    "SubAgentFeature",
    "Task",
    "TaskStore",
    "TodoFeature",
]
