"""Feature composition.

A ``Feature`` is a plugin bundle that can contribute, all optionally:

- tools (``get_tools`` and, after initiation, ``get_async_tools``)
- context injectors keyed by an exact tool name or a compiled regex;
  every matching injector's mapping is merged into the context the tool
  receives
- loop hooks (``get_loop_hooks``), a ``LoopHooks`` instance that sees
  every step event and can steer control flow around tool calls
- ``on_initiate`` / ``on_destroy`` lifecycle callbacks

Features never reference each other directly. A Feature that needs
another declares it by name in ``dependencies`` and looks it up through
``FeatureInitContext.get_feature`` during ``on_initiate``. Initiation runs
in dependency order (``resolve_order``).

Examples:
    A feature contributing one tool and injecting context into it::

        >>> class ClockFeature(Feature):
        ...     name = "clock"
        ...     def get_tools(self) -> list[Tool]:
        ...         return [now_tool]
        ...     def get_context_injectors(self) -> dict[InjectorPattern, ContextInjector]:
        ...         return {"now": lambda call: {"tz": "UTC"}}
"""

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeAlias

from tandem.lib.hooks import HookResult, StepHooks
from tandem.lib.messages import MessageLog, ModelResponse, ToolCall
from tandem.lib.pool import MailMessage
from tandem.lib.tools import Tool

logger = logging.getLogger(__name__)

InjectorPattern: TypeAlias = str | re.Pattern[str]
ContextInjector: TypeAlias = Callable[[ToolCall], Mapping[str, Any]]


class FeatureDependencyError(Exception):
    """Raised when features have a missing or circular dependency."""


def pattern_matches(pattern: InjectorPattern, tool_name: str) -> bool:
    """Exact match for strings, ``search`` semantics for compiled regexes."""
    match pattern:
        case re.Pattern():
            return pattern.search(tool_name) is not None
        case _:
            return pattern == tool_name


class LoopHooks(StepHooks):
    """Step hooks plus the control points around tool calls.

    All methods default to no-ops. ``should_wait`` is consulted only when
    the model called the ``wait`` tool in the current step; when it
    returns True the loop suspends on ``wait_for_message`` and hands the
    delivery to ``after_wait``.
    """

    async def before_no_tool_calls(
        self, log: MessageLog, response: ModelResponse, step: int
    ) -> HookResult:
        return None

    async def after_tool_calls(
        self, log: MessageLog, tool_calls: Sequence[ToolCall], step: int
    ) -> None:
        return None

    async def should_wait(self, log: MessageLog, step: int) -> bool:
        return False

    async def wait_for_message(self) -> MailMessage | None:
        return None

    async def after_wait(self, message: MailMessage, log: MessageLog, step: int) -> None:
        return None

    async def on_max_steps(
        self, log: MessageLog, result: str, step: int, agent_id: str
    ) -> None:
        return None


class FeatureInitContext:
    """Handed to ``Feature.on_initiate``.

    Attributes:
        agent_id: Identifier of the agent being initiated.
        agent: The owning agent facade.
        get_feature: Look up another registered feature by name.
        register_tool: Add a tool to the agent's registry.
    """

    def __init__(
        self,
        agent_id: str,
        agent: Any,
        get_feature: Callable[[str], "Feature | None"],
        register_tool: Callable[[Tool], None],
    ) -> None:
        self.agent_id = agent_id
        self.agent = agent
        self.get_feature = get_feature
        self.register_tool = register_tool


class Feature:
    """Base class for agent plugins. Override only the slots you use."""

    name: str = "feature"
    dependencies: Sequence[str] = ()

    def get_tools(self) -> list[Tool]:
        return []

    async def get_async_tools(self, ctx: FeatureInitContext) -> list[Tool]:
        return []

    def get_context_injectors(self) -> Mapping[InjectorPattern, ContextInjector]:
        return {}

    def get_loop_hooks(self) -> LoopHooks | None:
        return None

    async def on_initiate(self, ctx: FeatureInitContext) -> None:
        return None

    async def on_destroy(self) -> None:
        return None


def resolve_order(features: Sequence[Feature]) -> list[Feature]:
    """Order features so every dependency comes before its dependents.

    Registration order is kept wherever dependencies allow.

    Raises:
        FeatureDependencyError: On a missing dependency or a cycle.
    """
    by_name = {f.name: f for f in features}
    ordered: list[Feature] = []
    done: set[str] = set()
    visiting: list[str] = []

    def visit(feature: Feature) -> None:
        if feature.name in done:
            return
        if feature.name in visiting:
            cycle = " -> ".join([*visiting[visiting.index(feature.name) :], feature.name])
            raise FeatureDependencyError(f"Circular feature dependency: {cycle}")
        visiting.append(feature.name)
        for dep in feature.dependencies:
            if dep not in by_name:
                raise FeatureDependencyError(
                    f"Feature '{feature.name}' depends on missing feature '{dep}'"
                )
            visit(by_name[dep])
        visiting.pop()
        done.add(feature.name)
        ordered.append(feature)

    for feature in features:
        visit(feature)
    return ordered
