"""Tests for tools, the registry and the tool decorator."""

import pytest
from pydantic import BaseModel

from tandem.lib.tools import Tool, ToolError, ToolRegistry, ToolRuntime, tool


class GreetInput(BaseModel):
    name: str
    excited: bool = False


class GreetOutput(BaseModel):
    greeting: str


@tool("Greet someone.")
async def greet(params: GreetInput) -> GreetOutput:
    suffix = "!" if params.excited else "."
    return GreetOutput(greeting=f"Hello, {params.name}{suffix}")


@tool("Greet with an injected prefix.", name="prefixed_greet", tags=["demo"])
async def greet_with_context(params: GreetInput, context: ToolRuntime) -> str:
    return f"{context['prefix']} {params.name}"


class TestToolDecorator:
    """Tests for the tool decorator."""

    def test_infers_name_and_schema(self) -> None:
        assert greet.name == "greet"
        assert greet.parameters["properties"]["name"]["type"] == "string"
        assert greet.parameters["required"] == ["name"]

    def test_explicit_name_and_tags(self) -> None:
        assert greet_with_context.name == "prefixed_greet"
        assert greet_with_context.tags == ["demo"]

    @pytest.mark.asyncio
    async def test_model_result_is_dumped(self) -> None:
        result = await greet.execute({"name": "Ada", "excited": True}, {})

        assert result == {"greeting": "Hello, Ada!"}

    @pytest.mark.asyncio
    async def test_context_passed_to_second_parameter(self) -> None:
        result = await greet_with_context.execute({"name": "Ada"}, {"prefix": "Hi"})

        assert result == "Hi Ada"

    @pytest.mark.asyncio
    async def test_invalid_arguments_raise_tool_error(self) -> None:
        with pytest.raises(ToolError, match="Invalid input"):
            await greet.execute({"excited": True}, {})

    def test_uninferable_input_rejected(self) -> None:
        with pytest.raises(TypeError):

            @tool("No model.")
            async def bad(value: int) -> int:
                return value

    def test_schema_in_function_format(self) -> None:
        schema = greet.to_schema()

        assert schema["type"] == "function"
        assert schema["function"]["name"] == "greet"
        assert schema["function"]["description"] == "Greet someone."


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_register_and_lookup(self) -> None:
        registry = ToolRegistry([greet])

        assert "greet" in registry
        assert registry.get("greet") is greet
        assert registry.get("missing") is None
        assert registry.names() == ["greet"]

    def test_same_name_replaces(self) -> None:
        async def handler(args: dict[str, object], context: ToolRuntime) -> str:
            return "new"

        replacement = Tool("greet", "Replacement.", {"type": "object"}, handler)
        registry = ToolRegistry([greet, replacement])

        assert len(registry) == 1
        assert registry.get("greet") is replacement
