"""Todo feature: a task list the agent keeps for itself.

Contributes the ``task_*`` tools over an in-memory ``TaskStore`` and
nudges the model with a ``<system-reminder>`` when it has gone several
steps without touching the list. The context feature answers "when was a
task tool last called", so this feature depends on it.

Reminder rule: at the start of a step, count the steps completed since a
task tool was last called. Once that reaches ``active_threshold`` (some
task pending or in progress) or ``idle_threshold`` (none), append one
reminder. No second reminder is added until a task tool is used again.
"""

import logging
import re
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, Field

from tandem.agent.features.context import ContextFeature
from tandem.lib.features import (
    ContextInjector,
    Feature,
    FeatureDependencyError,
    FeatureInitContext,
    InjectorPattern,
    LoopHooks,
)
from tandem.lib.hooks import HookResult, StepContext
from tandem.lib.messages import Message
from tandem.lib.tools import Tool, ToolError, ToolRuntime, tool

logger = logging.getLogger(__name__)

TaskStatus: TypeAlias = Literal["pending", "in_progress", "completed", "deleted"]

TASK_TOOL_NAMES = ("task_create", "task_list", "task_get", "task_update", "task_clear")

DEFAULT_REMINDER = """\
<system-reminder>
The task tools haven't been used recently. If you're working on something that
benefits from tracking progress, use task_create to add tasks and task_update to
move them to in_progress when you start and completed when you finish. Clean up
the list if it has gone stale. Ignore this if it doesn't apply to the current work.
</system-reminder>"""


class Task(BaseModel):
    id: str
    subject: str
    description: str = ""
    active_form: str | None = Field(
        default=None, description="Present-continuous label shown while in progress"
    )
    status: TaskStatus = "pending"
    owner: str | None = None
    blocks: list[str] = Field(default_factory=list)
    blocked_by: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_active(self) -> bool:
        return self.status in ("pending", "in_progress")


class TaskStore:
    """Ordered task list with string ids from an increasing counter."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._next_id = 1

    def create(self, subject: str, **fields: Any) -> Task:
        task = Task(id=str(self._next_id), subject=subject, **fields)
        self._next_id += 1
        self._tasks[task.id] = task
        return task

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def require(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise ToolError(f"Task not found: {task_id}")
        return task

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        tasks = list(self._tasks.values())
        if status is None:
            return tasks
        return [t for t in tasks if t.status == status]

    def link(self, blocker_id: str, blocked_id: str) -> None:
        """Record that ``blocker_id`` blocks ``blocked_id`` on both tasks."""
        blocker, blocked = self.require(blocker_id), self.require(blocked_id)
        if blocked_id not in blocker.blocks:
            blocker.blocks.append(blocked_id)
        if blocker_id not in blocked.blocked_by:
            blocked.blocked_by.append(blocker_id)

    def delete(self, task_id: str) -> Task:
        task = self.require(task_id)
        del self._tasks[task_id]
        for other in self._tasks.values():
            if task_id in other.blocks:
                other.blocks.remove(task_id)
            if task_id in other.blocked_by:
                other.blocked_by.remove(task_id)
        return task

    def clear(self) -> int:
        count = len(self._tasks)
        self._tasks.clear()
        return count

    def has_active(self) -> bool:
        return any(t.is_active for t in self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)


# --- Schemas ---


class TaskCreateInput(BaseModel):
    subject: str = Field(description="Short imperative title, e.g. 'Write parser tests'")
    description: str = Field(default="", description="What done looks like")
    active_form: str | None = Field(
        default=None, description="Shown while in progress, e.g. 'Writing parser tests'"
    )
    owner: str | None = Field(default=None, description="Agent responsible for the task")
    metadata: dict[str, Any] = Field(default_factory=dict)


class TaskListInput(BaseModel):
    status: TaskStatus | None = Field(default=None, description="Only list tasks with this status")


class TaskIdInput(BaseModel):
    task_id: str = Field(description="Id returned by task_create")


class TaskUpdateInput(BaseModel):
    task_id: str = Field(description="Id returned by task_create")
    subject: str | None = None
    description: str | None = None
    active_form: str | None = None
    status: TaskStatus | None = Field(
        default=None, description="'deleted' removes the task from the list"
    )
    owner: str | None = None
    metadata: dict[str, Any] | None = Field(
        default=None, description="Merged into existing metadata; null values remove keys"
    )
    add_blocks: list[str] = Field(default_factory=list, description="Task ids this task blocks")
    add_blocked_by: list[str] = Field(
        default_factory=list, description="Task ids that block this task"
    )


class TaskClearInput(BaseModel):
    pass


class TaskOutput(BaseModel):
    task_id: str
    task: Task


class TaskListOutput(BaseModel):
    tasks: list[Task]
    summary: dict[str, int] = Field(description="Task count per status")


class TaskUpdateOutput(BaseModel):
    task_id: str
    task: Task | None = Field(description="Updated task, null once deleted")
    deleted: bool = False


class TaskClearOutput(BaseModel):
    cleared: int


# --- Tools ---


@tool(
    "Add a task to your task list. Use it when the work has several distinct steps "
    "or when the user gives you a list of things to do, so progress stays visible. "
    "Returns the new task with its task_id."
)
async def task_create(params: TaskCreateInput, context: ToolRuntime) -> TaskOutput:
    store: TaskStore = context["store"]
    task = store.create(**params.model_dump())
    logger.debug("Created task %s: %s", task.id, task.subject)
    return TaskOutput(task_id=task.id, task=task)


@tool(
    "List your tasks, optionally filtered by status, with a count per status. "
    "Use it to decide what to work on next."
)
async def task_list(params: TaskListInput, context: ToolRuntime) -> TaskListOutput:
    store: TaskStore = context["store"]
    return TaskListOutput(
        tasks=store.list_tasks(params.status),
        summary=dict(Counter(t.status for t in store.list_tasks())),
    )


@tool("Get one task by id, including what blocks it and what it blocks.")
async def task_get(params: TaskIdInput, context: ToolRuntime) -> TaskOutput:
    store: TaskStore = context["store"]
    return TaskOutput(task_id=params.task_id, task=store.require(params.task_id))


@tool(
    "Update a task. Set status to in_progress when you start it and completed as soon "
    "as it is done; set it to deleted to drop it. Only the fields you pass change."
)
async def task_update(params: TaskUpdateInput, context: ToolRuntime) -> TaskUpdateOutput:
    store: TaskStore = context["store"]
    task = store.require(params.task_id)

    if params.status == "deleted":
        store.delete(task.id)
        return TaskUpdateOutput(task_id=task.id, task=None, deleted=True)

    for field in ("subject", "description", "active_form", "status", "owner"):
        value = getattr(params, field)
        if value is not None:
            setattr(task, field, value)
    if params.metadata is not None:
        for key, value in params.metadata.items():
            if value is None:
                task.metadata.pop(key, None)
            else:
                task.metadata[key] = value
    for blocked_id in params.add_blocks:
        store.link(task.id, blocked_id)
    for blocker_id in params.add_blocked_by:
        store.link(blocker_id, task.id)
    task.updated_at = datetime.now()
    return TaskUpdateOutput(task_id=task.id, task=task)


@tool("Remove every task from the list. Use it when the list no longer reflects the work.")
async def task_clear(params: TaskClearInput, context: ToolRuntime) -> TaskClearOutput:
    store: TaskStore = context["store"]
    return TaskClearOutput(cleared=store.clear())


# --- Feature ---


class _TodoLoopHooks(LoopHooks):
    def __init__(self, feature: "TodoFeature") -> None:
        self.feature = feature

    async def on_step_start(self, ctx: StepContext) -> HookResult:
        reminder = self.feature.check_reminder()
        if reminder is not None:
            ctx.log.append(Message.system(reminder))
        return None


class TodoFeature(Feature):
    """Task list tools plus a periodic nudge to use them.

    Args:
        active_threshold: Steps without task tools before a reminder while
            tasks are pending or in progress.
        idle_threshold: Same, when no task is active.
        reminder_path: Optional file whose text replaces the built-in
            reminder.
    """

    name = "todo"
    dependencies = ("context",)

    def __init__(
        self,
        *,
        active_threshold: int = 3,
        idle_threshold: int = 6,
        reminder_path: Path | None = None,
    ) -> None:
        self.store = TaskStore()
        self.active_threshold = active_threshold
        self.idle_threshold = idle_threshold
        self.reminder_path = reminder_path
        self.reminder = DEFAULT_REMINDER
        self.context: ContextFeature | None = None
        self._reminded_at: int | None = None
        self._hooks = _TodoLoopHooks(self)

    async def on_initiate(self, ctx: FeatureInitContext) -> None:
        context = ctx.get_feature("context")
        if not isinstance(context, ContextFeature):
            raise FeatureDependencyError("The todo feature requires the context feature")
        self.context = context
        if self.reminder_path is not None:
            try:
                self.reminder = self.reminder_path.read_text().strip()
            except OSError as e:
                logger.warning("Could not read reminder %s: %s", self.reminder_path, e)

    def get_tools(self) -> list[Tool]:
        return [task_create, task_list, task_get, task_update, task_clear]

    def get_context_injectors(self) -> dict[InjectorPattern, ContextInjector]:
        return {re.compile(r"^task_"): lambda call: {"store": self.store}}

    def get_loop_hooks(self) -> LoopHooks:
        return self._hooks

    async def on_destroy(self) -> None:
        self.store.clear()
        self._reminded_at = None

    def last_task_tool_step(self) -> int:
        """Step of the latest task tool call, -1 if none was ever made."""
        if self.context is None:
            raise RuntimeError("The todo feature has not been initiated")
        steps = [
            record.step
            for name in TASK_TOOL_NAMES
            if (record := self.context.query().by_tool(name).last()) is not None
        ]
        return max(steps, default=-1)

    def check_reminder(self) -> str | None:
        """Return the reminder text if one is due at the current step."""
        if self.context is None:
            return None
        step = self.context.step
        last_use = self.last_task_tool_step()
        if self._reminded_at is not None and last_use < self._reminded_at:
            return None

        idle_steps = step - last_use - 1
        threshold = self.active_threshold if self.store.has_active() else self.idle_threshold
        if idle_steps < threshold:
            return None
        self._reminded_at = step
        logger.debug("Task reminder at step %d (%d idle steps)", step, idle_steps)
        return self.reminder
