"""Tests for the todo feature."""

import pytest

from conftest import ScriptedClient, call, reply
from tandem.agent.core import Agent
from tandem.agent.features.context import ContextFeature, MessageTag
from tandem.agent.features.todo import (
    DEFAULT_REMINDER,
    TaskStore,
    TodoFeature,
    task_clear,
    task_create,
    task_get,
    task_list,
    task_update,
)
from tandem.lib.features import FeatureDependencyError
from tandem.lib.tools import Tool, ToolError


@pytest.fixture
def store() -> TaskStore:
    return TaskStore()


class TestTaskTools:
    """Tests for the task_* tools against a store."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store: TaskStore) -> None:
        created = await task_create.execute(
            {"subject": "Write tests", "active_form": "Writing tests"}, {"store": store}
        )
        fetched = await task_get.execute({"task_id": "1"}, {"store": store})

        assert created["task_id"] == "1"
        assert created["task"]["status"] == "pending"
        assert fetched["task"]["subject"] == "Write tests"

    @pytest.mark.asyncio
    async def test_ids_increase(self, store: TaskStore) -> None:
        for subject in ("a", "b", "c"):
            await task_create.execute({"subject": subject}, {"store": store})

        assert [t.id for t in store.list_tasks()] == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_list_filters_and_summarizes(self, store: TaskStore) -> None:
        store.create("a")
        store.create("b", status="in_progress")
        store.create("c", status="completed")

        listed = await task_list.execute({"status": "in_progress"}, {"store": store})

        assert [t["subject"] for t in listed["tasks"]] == ["b"]
        assert listed["summary"] == {"pending": 1, "in_progress": 1, "completed": 1}

    @pytest.mark.asyncio
    async def test_update_fields_and_metadata(self, store: TaskStore) -> None:
        store.create("a", metadata={"keep": 1, "drop": 2})

        updated = await task_update.execute(
            {"task_id": "1", "status": "in_progress", "owner": "Basic_1", "metadata": {"drop": None, "new": 3}},
            {"store": store},
        )

        assert updated["task"]["status"] == "in_progress"
        assert updated["task"]["owner"] == "Basic_1"
        assert updated["task"]["metadata"] == {"keep": 1, "new": 3}

    @pytest.mark.asyncio
    async def test_dependencies_are_linked_both_ways(self, store: TaskStore) -> None:
        store.create("design")
        store.create("build")

        await task_update.execute({"task_id": "1", "add_blocks": ["2"]}, {"store": store})

        assert store.get("1").blocks == ["2"]
        assert store.get("2").blocked_by == ["1"]

    @pytest.mark.asyncio
    async def test_deleted_removes_and_unlinks(self, store: TaskStore) -> None:
        store.create("design")
        store.create("build")
        store.link("1", "2")

        result = await task_update.execute({"task_id": "1", "status": "deleted"}, {"store": store})

        assert result["deleted"] is True
        assert store.get("1") is None
        assert store.get("2").blocked_by == []

    @pytest.mark.asyncio
    async def test_unknown_task(self, store: TaskStore) -> None:
        with pytest.raises(ToolError, match="Task not found: 9"):
            await task_get.execute({"task_id": "9"}, {"store": store})

    @pytest.mark.asyncio
    async def test_clear(self, store: TaskStore) -> None:
        store.create("a")
        store.create("b")

        assert (await task_clear.execute({}, {"store": store})) == {"cleared": 2}
        assert len(store) == 0


class TestReminder:
    """Tests for the reminder to use the task tools."""

    @pytest.mark.asyncio
    async def test_reminder_once_until_tools_used(self, echo_tool: Tool) -> None:
        client = ScriptedClient(
            [
                call("echo", text="0"),
                call("echo", text="1"),
                call("task_list", "t1"),
                call("echo", text="3"),
                call("echo", text="4"),
                reply("done"),
            ]
        )
        context = ContextFeature()
        todo = TodoFeature(idle_threshold=2)
        agent = Agent(client, tools=[echo_tool], features=[context, todo], max_steps=10)

        await agent.on_call("work")

        reminders = context.query().by_tag(MessageTag.REMINDER).all()
        assert [r.step for r in reminders] == [2, 5]
        assert reminders[0].content == DEFAULT_REMINDER
        assert any(m.content == DEFAULT_REMINDER for m in client.requests[2])
        assert not any(m.content == DEFAULT_REMINDER for m in client.requests[1])

    @pytest.mark.asyncio
    async def test_active_tasks_use_shorter_threshold(self) -> None:
        todo = TodoFeature(active_threshold=1, idle_threshold=5)
        client = ScriptedClient(
            [call("task_create", "t1", subject="first"), call("task_get", "t2", task_id="1"), reply("a")]
        )
        context = ContextFeature()
        agent = Agent(client, features=[context, todo])

        await agent.on_call("work")
        client.add(reply("b"))
        await agent.on_call("more")

        assert todo.store.has_active()
        assert context.query().by_tag(MessageTag.REMINDER).count() == 1

    @pytest.mark.asyncio
    async def test_custom_reminder_file(self, tmp_path, echo_tool: Tool) -> None:
        path = tmp_path / "reminder.md"
        path.write_text("<system-reminder>track it</system-reminder>\n")
        todo = TodoFeature(idle_threshold=0, reminder_path=path)
        agent = Agent(ScriptedClient(), features=[ContextFeature(), todo])

        await agent.on_call("go")

        assert agent.log[1].content == "<system-reminder>track it</system-reminder>"

    def test_not_initiated(self) -> None:
        with pytest.raises(RuntimeError, match="not been initiated"):
            TodoFeature().last_task_tool_step()

    @pytest.mark.asyncio
    async def test_requires_context(self) -> None:
        agent = Agent(ScriptedClient(), features=[TodoFeature()])

        with pytest.raises(FeatureDependencyError):
            await agent.on_call("go")
