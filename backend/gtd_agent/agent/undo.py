"""Undo manager: bounded LIFO of inverse operations, inverted by dispatch on the variant tag."""

import logging
from collections.abc import Awaitable, Callable
from datetime import date

from sqlalchemy import update

from gtd_agent.agent.context_manager import pop_undo, push_undo
from gtd_agent.agent.tools.common import get_or_create_user, get_person, get_task, task_from_snapshot
from gtd_agent.agent.tools.types import ToolContext, ToolResult
from gtd_agent.models import Task
from gtd_agent.schemas.context import ConversationContext
from gtd_agent.schemas.enums import TaskStatus
from gtd_agent.schemas.undo import (
    DeleteCreatedPerson,
    DeleteCreatedTask,
    DeleteCreatedTasks,
    RestoreDeletedTask,
    RestoreDeletedTasks,
    RestorePerson,
    RevertTaskUpdate,
    UncompleteTask,
    UncompleteTasks,
    UndoAction,
)

logger = logging.getLogger(__name__)

NOTHING_TO_UNDO = "Nothing to undo"
ALREADY_GONE = "That's already gone, so there's nothing to undo"


class UndoManager:
    def __init__(self, cap: int = 5):
        self.cap = cap
        self._handlers: dict[str, Callable[[UndoAction, ToolContext], Awaitable[ToolResult]]] = {
            "delete_created_task": self._delete_created_task,
            "delete_created_tasks": self._delete_created_tasks,
            "restore_deleted_task": self._restore_deleted_task,
            "restore_deleted_tasks": self._restore_deleted_tasks,
            "revert_task_update": self._revert_task_update,
            "uncomplete_task": self._uncomplete_task,
            "uncomplete_tasks": self._uncomplete_tasks,
            "restore_person": self._restore_person,
            "delete_created_person": self._delete_created_person,
        }

    def push(self, context: ConversationContext, action: UndoAction) -> None:
        context.session = push_undo(context.session, action, self.cap)

    async def pop_and_invert(self, context: ConversationContext, ctx: ToolContext) -> ToolResult:
        """Pop the newest action and apply its inverse. A failed inverse is not pushed back."""
        context.session, action = pop_undo(context.session)
        if action is None:
            return ToolResult.fail(NOTHING_TO_UNDO)
        result = await self.invert(action, ctx)
        logger.info(
            "undo",
            extra={"user_id": ctx.user_id, "action": action.type, "success": result.success, "error": result.error},
        )
        if result.success:
            self._forget(context, action)
        return result

    async def invert(self, action: UndoAction, ctx: ToolContext) -> ToolResult:
        return await self._handlers[action.type](action, ctx)

    def _forget(self, context: ConversationContext, action: UndoAction) -> None:
        """Drop references to entities the inverse removed."""
        removed: set[str] = set()
        if isinstance(action, DeleteCreatedTask):
            removed = {action.task_id}
        elif isinstance(action, DeleteCreatedTasks):
            removed = set(action.task_ids)
        if not removed:
            return
        session = context.session
        context.session = session.model_copy(
            update={
                "recent_tasks": [t for t in session.recent_tasks if t.id not in removed],
                "last_created_task_id": None if session.last_created_task_id in removed else session.last_created_task_id,
            }
        )

    @staticmethod
    def _done(action: UndoAction, **data) -> ToolResult:
        label = action.description or action.type.replace("_", " ")
        return ToolResult.ok({"message": f"Undone: {label}", **data})

    # --- inverses ------------------------------------------------------------

    async def _remove_created(self, ctx: ToolContext, task_ids: list[str]) -> int:
        user = await get_or_create_user(ctx.db, ctx.user_id)
        removed = 0
        for task_id in task_ids:
            task = await get_task(ctx.db, ctx.user_id, task_id)
            if task is None:
                continue
            if task.status != TaskStatus.PENDING.value:
                user.total_tasks_completed = max(0, user.total_tasks_completed - 1)
            try:
                await ctx.task_store.delete(task)
            except Exception as e:
                logger.warning("task_store delete failed during undo", extra={"task_id": task.id, "error": str(e)})
            await ctx.db.delete(task)
            removed += 1
        user.total_tasks_captured = max(0, user.total_tasks_captured - removed)
        await ctx.db.flush()
        return removed

    async def _delete_created_task(self, action: DeleteCreatedTask, ctx: ToolContext) -> ToolResult:
        if not await self._remove_created(ctx, [action.task_id]):
            return ToolResult.fail(ALREADY_GONE)
        return self._done(action)

    async def _delete_created_tasks(self, action: DeleteCreatedTasks, ctx: ToolContext) -> ToolResult:
        removed = await self._remove_created(ctx, action.task_ids)
        if not removed:
            return ToolResult.fail(ALREADY_GONE)
        return self._done(action, removed=removed)

    async def _restore(self, ctx: ToolContext, snapshots) -> int:
        # Re-insert with original ids; no stats change and no external push.
        restored = 0
        for snap in snapshots:
            if await get_task(ctx.db, ctx.user_id, snap.id) is not None:
                continue
            ctx.db.add(task_from_snapshot(ctx.user_id, snap))
            restored += 1
        await ctx.db.flush()
        return restored

    async def _restore_deleted_task(self, action: RestoreDeletedTask, ctx: ToolContext) -> ToolResult:
        if not await self._restore(ctx, [action.snapshot]):
            return ToolResult.fail("That task is already back")
        return self._done(action)

    async def _restore_deleted_tasks(self, action: RestoreDeletedTasks, ctx: ToolContext) -> ToolResult:
        restored = await self._restore(ctx, action.snapshots)
        if not restored:
            return ToolResult.fail("Those tasks are already back")
        return self._done(action, restored=restored)

    async def _revert_task_update(self, action: RevertTaskUpdate, ctx: ToolContext) -> ToolResult:
        task = await get_task(ctx.db, ctx.user_id, action.task_id)
        if task is None:
            return ToolResult.fail(ALREADY_GONE)
        for field, value in action.previous_fields.items():
            if field == "due_date" and isinstance(value, str):
                value = date.fromisoformat(value)
            setattr(task, field, value)
        await ctx.db.flush()
        return self._done(action)

    async def _reopen(self, ctx: ToolContext, task_ids: list[str], previous_status: str) -> int:
        user = await get_or_create_user(ctx.db, ctx.user_id)
        reopened = 0
        for task_id in task_ids:
            task = await get_task(ctx.db, ctx.user_id, task_id)
            if task is None or task.status == previous_status:
                continue
            task.status = previous_status
            task.completed_at = None
            reopened += 1
        user.total_tasks_completed = max(0, user.total_tasks_completed - reopened)
        await ctx.db.flush()
        return reopened

    async def _uncomplete_task(self, action: UncompleteTask, ctx: ToolContext) -> ToolResult:
        if not await self._reopen(ctx, [action.task_id], action.previous_status):
            return ToolResult.fail("That task is already open or gone")
        return self._done(action)

    async def _uncomplete_tasks(self, action: UncompleteTasks, ctx: ToolContext) -> ToolResult:
        reopened = await self._reopen(ctx, action.task_ids, TaskStatus.PENDING.value)
        if not reopened:
            return ToolResult.fail("Those tasks are already open or gone")
        return self._done(action, reopened=reopened)

    async def _restore_person(self, action: RestorePerson, ctx: ToolContext) -> ToolResult:
        person = await get_person(ctx.db, ctx.user_id, action.snapshot.id)
        if person is None:
            return ToolResult.fail(ALREADY_GONE)
        snap = action.snapshot
        person.name = snap.name
        person.aliases = list(snap.aliases)
        person.frequency = snap.frequency
        person.day_of_week = snap.day_of_week
        person.notes = snap.notes
        person.active = True
        await ctx.db.flush()
        return self._done(action)

    async def _delete_created_person(self, action: DeleteCreatedPerson, ctx: ToolContext) -> ToolResult:
        person = await get_person(ctx.db, ctx.user_id, action.person_id)
        if person is None:
            return ToolResult.fail(ALREADY_GONE)
        await ctx.db.execute(
            update(Task).where(Task.user_id == ctx.user_id, Task.person_id == person.id).values(person_id=None)
        )
        await ctx.db.delete(person)
        await ctx.db.flush()
        return self._done(action)
