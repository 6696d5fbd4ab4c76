"""
tests/test_undo.py — undo stack and inverses

Test groups:
  - stack bounds: oldest evicted past the cap, empty stack
  - inverses: create, delete (restore with the same id), update, complete, batch
  - inverse against a vanished target, consecutive undos
"""
import pytest
from sqlalchemy import select

from conftest import call, create
from gtd_agent.agent.undo import ALREADY_GONE, NOTHING_TO_UNDO
from gtd_agent.models import Task, User
from gtd_agent.services.task_store import TaskStore


class RecordingTaskStore(TaskStore):
    def __init__(self):
        self.pushed: list[str] = []
        self.deleted: list[str] = []

    async def push(self, task):
        self.pushed.append(task.id)
        return f"ext-{task.id}"

    async def complete(self, task):
        return None

    async def delete(self, task):
        self.deleted.append(task.id)


async def _undo(executor, ctx):
    return await executor.execute(call("undo_last_action"), ctx)


async def _user(ctx) -> User:
    return await ctx.db.get(User, ctx.user_id)


async def _task_ids(ctx) -> set[str]:
    result = await ctx.db.execute(select(Task.id).where(Task.user_id == ctx.user_id))
    return set(result.scalars().all())


# ─────────────────────────────────────────────────────────────────────────────
# Stack bounds
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestUndoStack:
    async def test_nothing_to_undo(self, executor, tool_ctx):
        result = await _undo(executor, tool_ctx)
        assert not result.success
        assert result.error == NOTHING_TO_UNDO

    async def test_cap_evicts_oldest(self, executor, tool_ctx):
        created = [await create(executor, tool_ctx, f"Task {i}") for i in range(7)]
        stack = tool_ctx.context.session.undo_stack
        assert len(stack) == 5
        assert [a.task_id for a in stack] == [t["id"] for t in created[2:]]

        for _ in range(5):
            assert (await _undo(executor, tool_ctx)).success
        result = await _undo(executor, tool_ctx)
        assert result.error == NOTHING_TO_UNDO
        # The two oldest fell off the stack and are still there.
        assert await _task_ids(tool_ctx) == {created[0]["id"], created[1]["id"]}

    async def test_undo_does_not_push_itself(self, executor, tool_ctx):
        await create(executor, tool_ctx, "Call mom")
        await _undo(executor, tool_ctx)
        assert tool_ctx.context.session.undo_stack == []


# ─────────────────────────────────────────────────────────────────────────────
# Inverses
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestInverses:
    async def test_undo_create_deletes_and_decrements_captured(self, executor, tool_ctx):
        task = await create(executor, tool_ctx, "Call mom", context="phone")
        assert (await _user(tool_ctx)).total_tasks_captured == 1

        result = await _undo(executor, tool_ctx)
        assert result.success
        assert result.data["message"] == 'Undone: create "Call mom"'
        assert task["id"] not in await _task_ids(tool_ctx)
        assert (await _user(tool_ctx)).total_tasks_captured == 0
        assert tool_ctx.context.session.last_created_task_id is None

    async def test_restore_keeps_id_without_stats_or_push(self, executor, tool_ctx):
        store = RecordingTaskStore()
        tool_ctx.task_store = store
        task = await create(executor, tool_ctx, "Renew passport", due_date="2026-11-01")
        deleted = await executor.execute(call("delete_task", {"task_id": task["id"]}), tool_ctx)
        assert deleted.success
        assert task["id"] not in await _task_ids(tool_ctx)

        result = await _undo(executor, tool_ctx)
        assert result.success
        restored = await tool_ctx.db.get(Task, task["id"])
        assert restored.title == "Renew passport"
        assert restored.due_date.isoformat() == "2026-11-01"
        assert restored.external_id == f"ext-{task['id']}"
        assert store.pushed == [task["id"]]
        assert (await _user(tool_ctx)).total_tasks_captured == 1

    async def test_undo_update_restores_previous_fields(self, executor, tool_ctx):
        task = await create(executor, tool_ctx, "Call dentist", context="computer")
        updated = await executor.execute(
            call("update_task", {"task_id": task["id"], "context": "phone", "priority": "today"}), tool_ctx
        )
        assert sorted(updated.data["changed"]) == ["context", "priority"]

        assert (await _undo(executor, tool_ctx)).success
        row = await tool_ctx.db.get(Task, task["id"])
        assert row.context == "computer"
        assert row.priority is None

    async def test_undo_complete_reopens(self, executor, tool_ctx):
        task = await create(executor, tool_ctx, "Pay rent")
        assert (await executor.execute(call("complete_task", {"task_id": task["id"]}), tool_ctx)).success
        assert (await _user(tool_ctx)).total_tasks_completed == 1

        assert (await _undo(executor, tool_ctx)).success
        row = await tool_ctx.db.get(Task, task["id"])
        assert row.status == "pending"
        assert row.completed_at is None
        assert (await _user(tool_ctx)).total_tasks_completed == 0

    async def test_undo_batch_create_removes_all(self, executor, tool_ctx):
        result = await executor.execute(
            call("batch_create_tasks", {"tasks": [{"title": "A", "type": "action"}, {"title": "B", "type": "action"}]}),
            tool_ctx,
        )
        assert len(result.data["created"]) == 2

        undone = await _undo(executor, tool_ctx)
        assert undone.data["removed"] == 2
        assert await _task_ids(tool_ctx) == set()
        assert (await _user(tool_ctx)).total_tasks_captured == 0


# ─────────────────────────────────────────────────────────────────────────────
# Vanished targets and consecutive undos
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestUndoEdges:
    async def test_target_already_gone(self, executor, tool_ctx):
        task = await create(executor, tool_ctx, "Buy milk")
        await tool_ctx.db.delete(await tool_ctx.db.get(Task, task["id"]))
        await tool_ctx.db.flush()

        result = await _undo(executor, tool_ctx)
        assert not result.success
        assert result.error == ALREADY_GONE
        # A failed inverse is not pushed back.
        assert tool_ctx.context.session.undo_stack == []

    async def test_two_undos_in_a_row(self, executor, tool_ctx):
        first = await create(executor, tool_ctx, "First")
        second = await create(executor, tool_ctx, "Second")

        assert (await _undo(executor, tool_ctx)).success
        assert await _task_ids(tool_ctx) == {first["id"]}
        assert (await _undo(executor, tool_ctx)).success
        assert await _task_ids(tool_ctx) == set()
        assert second["id"] not in [t.id for t in tool_ctx.context.session.recent_tasks]
