"""Tools, the tool registry and the ``tool`` decorator.

A ``Tool`` is a name, a description, a JSON Schema for its arguments and
an async ``execute(args, context)``. ``context`` is the mapping merged
from every Feature context-injector whose pattern matches the tool name;
tools that need collaborators (a pool, a task store) read them from it
rather than closing over globals.

Examples:
    Define a tool with a typed input model::

        >>> from pydantic import BaseModel, Field
        >>> class EchoInput(BaseModel):
        ...     text: str = Field(description="Text to echo")
        >>> class EchoOutput(BaseModel):
        ...     text: str
        >>> @tool("Echo the given text back.")
        ... async def echo(params: EchoInput) -> EchoOutput:
        ...     return EchoOutput(text=params.text)
        >>> registry = ToolRegistry([echo])
        >>> registry.names()
        ['echo']

    Read injected context from a second parameter::

        >>> @tool("Count open tasks.")
        ... async def count_tasks(params: Empty, context: ToolRuntime) -> CountOutput:
        ...     return CountOutput(count=len(context["store"]))
"""

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, TypeAlias, get_type_hints

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ToolRuntime: TypeAlias = Mapping[str, Any]
"""Injected per-call context handed to ``Tool.execute``."""

ToolHandler: TypeAlias = Callable[[dict[str, Any], ToolRuntime], Awaitable[Any]]


class ToolError(Exception):
    """Raise in a tool handler to report a recoverable failure to the model."""


class Tool:
    """A callable capability exposed to the model.

    Args:
        name: Unique tool identifier.
        description: What/when/why; the model's only documentation.
        parameters: JSON Schema for the arguments object.
        handler: ``async (args, context) -> result``.
        tags: Optional classification tags.
    """

    def __init__(
        self,
        name: str,
        description: str,
        parameters: dict[str, Any],
        handler: ToolHandler,
        *,
        tags: list[str] | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.parameters = parameters
        self.handler = handler
        self.tags = tags or []

    async def execute(self, args: dict[str, Any], context: ToolRuntime) -> Any:
        return await self.handler(args, context)

    def to_schema(self) -> dict[str, Any]:
        """Function-calling schema in the chat-completions format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def __repr__(self) -> str:
        return f"Tool(name={self.name!r})"


class ToolRegistry:
    """Name-indexed tool catalogue. Registering an existing name replaces it."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for t in tools:
            self.register(t)

    def register(self, t: Tool) -> None:
        if t.name in self._tools:
            logger.debug("Replacing tool %s", t.name)
        self._tools[t.name] = t

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def all(self) -> list[Tool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def tool(
    description: str,
    input_model: type[BaseModel] | None = None,
    *,
    name: str | None = None,
    tags: list[str] | None = None,
) -> Callable[[Callable[..., Awaitable[Any]]], Tool]:
    """Decorator turning a typed async handler into a ``Tool``.

    The input model is inferred from the handler's first parameter
    annotation when not given. Arguments are validated before the handler
    runs; a ``BaseModel`` return value is dumped to a plain dict. If the
    handler declares a second parameter it receives the injected context.

    Args:
        description: What/when/why; the model's only documentation.
        input_model: Pydantic model for the arguments.
        name: Tool name. Defaults to the handler's function name.
        tags: Optional classification tags.

    Raises:
        TypeError: If no input model is given and none can be inferred.
    """

    def decorator(handler: Callable[..., Awaitable[Any]]) -> Tool:
        tool_name = name or handler.__name__
        params = list(inspect.signature(handler).parameters.values())

        resolved_input = input_model
        if resolved_input is None:
            if not params:
                msg = f"tool '{tool_name}': handler has no parameters to infer input_model from"
                raise TypeError(msg)
            param_type = get_type_hints(handler).get(params[0].name)
            if isinstance(param_type, type) and issubclass(param_type, BaseModel):
                resolved_input = param_type
        if resolved_input is None:
            msg = f"tool '{tool_name}': cannot infer input_model from annotations"
            raise TypeError(msg)

        final_input: type[BaseModel] = resolved_input
        wants_context = len(params) > 1

        async def wrapper(args: dict[str, Any], context: ToolRuntime) -> Any:
            try:
                validated = final_input.model_validate(args)
            except ValidationError as e:
                raise ToolError(f"Invalid input: {e}") from e
            if wants_context:
                result = await handler(validated, context)
            else:
                result = await handler(validated)
            if isinstance(result, BaseModel):
                return result.model_dump(mode="json")
            return result

        return Tool(
            name=tool_name,
            description=description,
            parameters=final_input.model_json_schema(),
            handler=wrapper,
            tags=tags,
        )

    return decorator
