"""Task tools: lookups (lookup_tasks, lookup_today_tasks) and actions (create/update/complete/delete, undo)."""

import logging
import uuid
from datetime import date
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field
from sqlalchemy import or_, select
from sqlalchemy.orm import selectinload

from gtd_agent.agent.tools.base_tool import BaseTool
from gtd_agent.agent.tools.common import (
    get_or_create_user,
    get_task,
    person_ref,
    snapshot_task,
    task_ref,
    task_to_dict,
)
from gtd_agent.agent.tools.tool_def import ToolDefinition, ToolKind
from gtd_agent.agent.tools.types import ToolContext, ToolResult
from gtd_agent.models import Person, Task
from gtd_agent.schemas.context import TrackEntities
from gtd_agent.schemas.enums import PERSON_REQUIRED_TYPES, TaskContext, TaskPriority, TaskStatus, TaskType
from gtd_agent.schemas.undo import DeleteCreatedTask, RestoreDeletedTask, RevertTaskUpdate, UncompleteTask
from gtd_agent.services.people import AmbiguousPersonError, get_or_create_person, list_active_people, match_people
from gtd_agent.services.timezones import local_now, naive_utc

if TYPE_CHECKING:
    from gtd_agent.agent.undo import UndoManager

logger = logging.getLogger(__name__)

TASK_ID_DESCRIPTION = 'Task id from a lookup result, or "#1", "#2"… for the n-th task just shown.'


def _completed_status(task_type: str) -> str:
    return TaskStatus.DISCUSSED.value if task_type == TaskType.AGENDA.value else TaskStatus.COMPLETED.value


async def user_today(ctx: ToolContext) -> date:
    user = await get_or_create_user(ctx.db, ctx.user_id)
    return local_now(ctx.now, user.timezone).date()


def _track_tasks(tasks: list[Task]) -> TrackEntities:
    return TrackEntities(tasks=[task_ref(t, t.person.name if t.person else None) for t in tasks])


# --- lookups -----------------------------------------------------------------


class LookupTasksParams(BaseModel):
    type: TaskType | None = None
    status: Literal["pending", "completed", "discussed", "all"] = "pending"
    context: TaskContext | None = None
    priority: TaskPriority | None = None
    person_name: str | None = Field(default=None, description="Only tasks linked to this person (name or alias)")
    search: str | None = Field(default=None, description="Case-insensitive text to find in task titles")
    due_before: date | None = None
    due_after: date | None = None
    limit: int = Field(default=10, ge=1, le=50)


class LookupTasksTool(BaseTool):
    """Search the user's tasks by filters. Results become the "recent tasks" for follow-up references."""

    async def call(
        self,
        ctx: ToolContext,
        *,
        type: TaskType | None = None,
        status: str = "pending",
        context: TaskContext | None = None,
        priority: TaskPriority | None = None,
        person_name: str | None = None,
        search: str | None = None,
        due_before: date | None = None,
        due_after: date | None = None,
        limit: int = 10,
        **kwargs: Any,
    ) -> ToolResult:
        stmt = select(Task).options(selectinload(Task.person)).where(Task.user_id == ctx.user_id)
        if status != "all":
            stmt = stmt.where(Task.status == status)
        if type is not None:
            stmt = stmt.where(Task.type == type.value)
        if context is not None:
            stmt = stmt.where(Task.context == context.value)
        if priority is not None:
            stmt = stmt.where(Task.priority == priority.value)
        if due_before is not None:
            stmt = stmt.where(Task.due_date <= due_before)
        if due_after is not None:
            stmt = stmt.where(Task.due_date >= due_after)
        if search and search.strip():
            for word in search.strip().split():
                stmt = stmt.where(Task.title.ilike(f"%{word}%"))
        if person_name and person_name.strip():
            people = match_people(await list_active_people(ctx.db, ctx.user_id), person_name)
            if not people:
                return ToolResult.ok({"tasks": [], "count": 0, "note": f"No person matching '{person_name}'"})
            stmt = stmt.where(Task.person_id.in_([p.id for p in people]))

        stmt = stmt.order_by(Task.due_date.is_(None), Task.due_date, Task.created_at.desc()).limit(limit)
        result = await ctx.db.execute(stmt)
        tasks = list(result.scalars().all())
        logger.info("lookup_tasks", extra={"user_id": ctx.user_id, "count": len(tasks)})
        return ToolResult.ok(
            {
                "tasks": [task_to_dict(t, t.person.name if t.person else None) for t in tasks],
                "count": len(tasks),
            },
            track_entities=_track_tasks(tasks) if tasks else None,
        )


class LookupTodayTasksParams(BaseModel):
    include_overdue: bool = True


class LookupTodayTasksTool(BaseTool):
    """Pending tasks due today (user's local date), marked priority=today, and optionally overdue."""

    async def call(self, ctx: ToolContext, *, include_overdue: bool = True, **kwargs: Any) -> ToolResult:
        today = await user_today(ctx)
        due_filter = Task.due_date <= today if include_overdue else Task.due_date == today
        result = await ctx.db.execute(
            select(Task)
            .options(selectinload(Task.person))
            .where(
                Task.user_id == ctx.user_id,
                Task.status == TaskStatus.PENDING.value,
                or_(due_filter, Task.priority == TaskPriority.TODAY.value),
            )
            .order_by(Task.due_date.is_(None), Task.due_date, Task.created_at)
        )
        tasks = list(result.scalars().all())
        overdue = [t.id for t in tasks if t.due_date is not None and t.due_date < today]
        return ToolResult.ok(
            {
                "date": today.isoformat(),
                "tasks": [task_to_dict(t, t.person.name if t.person else None) for t in tasks],
                "overdue_ids": overdue,
                "count": len(tasks),
            },
            track_entities=_track_tasks(tasks) if tasks else None,
        )


# --- actions -----------------------------------------------------------------


class CreateTaskParams(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    type: TaskType
    context: TaskContext | None = None
    priority: TaskPriority | None = None
    due_date: date | None = None
    person_name: str | None = Field(default=None, description="Required for waiting and agenda tasks")
    notes: str | None = None


async def insert_task(ctx: ToolContext, params: CreateTaskParams) -> tuple[Task, Person | None]:
    """Insert one task row, resolving or creating its person. Caller handles stats and undo."""
    if params.type in PERSON_REQUIRED_TYPES and not (params.person_name or "").strip():
        raise ValueError(f"{params.type.value} tasks need a person")
    person = None
    if params.person_name and params.person_name.strip():
        person, created = await get_or_create_person(ctx.db, ctx.user_id, params.person_name)
        if created:
            logger.info("create_task: auto-created person", extra={"user_id": ctx.user_id, "person_id": person.id})
    task = Task(
        id=str(uuid.uuid4()),
        user_id=ctx.user_id,
        title=params.title.strip(),
        type=params.type.value,
        status=TaskStatus.PENDING.value,
        context=params.context.value if params.context else None,
        priority=params.priority.value if params.priority else None,
        due_date=params.due_date,
        person_id=person.id if person else None,
        notes=params.notes,
        created_at=naive_utc(ctx.now),
    )
    ctx.db.add(task)
    await ctx.db.flush()
    return task, person


async def push_to_task_store(ctx: ToolContext, task: Task) -> None:
    try:
        task.external_id = await ctx.task_store.push(task)
    except Exception as e:
        # Local row is the record; the external copy can be re-synced.
        logger.warning("task_store push failed", extra={"task_id": task.id, "error": str(e)})


class CreateTaskTool(BaseTool):
    async def call(self, ctx: ToolContext, **kwargs: Any) -> ToolResult:
        params = CreateTaskParams.model_construct(**kwargs)  # already validated by the executor
        try:
            task, person = await insert_task(ctx, params)
        except AmbiguousPersonError as e:
            return ToolResult.fail(str(e), data={"people": [p.name for p in e.matches]})
        except ValueError as e:
            return ToolResult.fail(str(e))

        user = await get_or_create_user(ctx.db, ctx.user_id)
        user.total_tasks_captured += 1
        await push_to_task_store(ctx, task)
        logger.info("create_task", extra={"user_id": ctx.user_id, "task_id": task.id, "type": task.type})

        person_name = person.name if person else None
        return ToolResult.ok(
            {"task": task_to_dict(task, person_name)},
            undo_action=DeleteCreatedTask(task_id=task.id, description=f'create "{task.title}"'),
            track_entities=TrackEntities(
                tasks=[task_ref(task, person_name)],
                people=[person_ref(person)] if person else [],
                last_created_id=task.id,
            ),
        )


class UpdateTaskParams(BaseModel):
    task_id: str = Field(..., description=TASK_ID_DESCRIPTION)
    title: str | None = Field(default=None, min_length=1, max_length=500)
    type: TaskType | None = None
    context: TaskContext | None = None
    priority: TaskPriority | None = None
    due_date: date | None = None
    clear_due_date: bool = False
    person_name: str | None = None
    notes: str | None = Field(default=None, description="Replaces the task notes")


class UpdateTaskTool(BaseTool):
    """Change fields of an existing task. Records previous values for undo."""

    async def call(self, ctx: ToolContext, *, task_id: str, **kwargs: Any) -> ToolResult:
        task = await get_task(ctx.db, ctx.user_id, task_id)
        if task is None:
            return ToolResult.fail(f"Task {task_id} not found")

        changes: dict[str, Any] = {}
        for field in ("title", "context", "priority", "notes", "type"):
            value = kwargs.get(field)
            if value is not None:
                changes[field] = value.value if hasattr(value, "value") else value
        if kwargs.get("clear_due_date"):
            changes["due_date"] = None
        elif kwargs.get("due_date") is not None:
            changes["due_date"] = kwargs["due_date"]

        person = task.person
        person_name = kwargs.get("person_name")
        if person_name and person_name.strip():
            try:
                person, _ = await get_or_create_person(ctx.db, ctx.user_id, person_name)
            except AmbiguousPersonError as e:
                return ToolResult.fail(str(e))
            changes["person_id"] = person.id

        new_type = changes.get("type", task.type)
        if new_type in {t.value for t in PERSON_REQUIRED_TYPES} and changes.get("person_id", task.person_id) is None:
            return ToolResult.fail(f"{new_type} tasks need a person")

        changes = {k: v for k, v in changes.items() if getattr(task, k) != v}
        if not changes:
            return ToolResult.fail("Nothing to update")

        previous: dict[str, Any] = {}
        for field, value in changes.items():
            old = getattr(task, field)
            previous[field] = old.isoformat() if isinstance(old, date) else old
            setattr(task, field, value)
        await ctx.db.flush()
        logger.info("update_task", extra={"user_id": ctx.user_id, "task_id": task.id, "fields": list(changes)})

        person_label = person.name if person else None
        return ToolResult.ok(
            {"task": task_to_dict(task, person_label), "changed": list(changes)},
            undo_action=RevertTaskUpdate(
                task_id=task.id,
                previous_fields=previous,
                description=f'edit "{task.title}"',
            ),
            track_entities=TrackEntities(tasks=[task_ref(task, person_label)]),
        )


class TaskIdParams(BaseModel):
    task_id: str = Field(..., description=TASK_ID_DESCRIPTION)


async def mark_complete(ctx: ToolContext, task: Task) -> str:
    previous = task.status
    task.status = _completed_status(task.type)
    task.completed_at = naive_utc(ctx.now)
    try:
        await ctx.task_store.complete(task)
    except Exception as e:
        logger.warning("task_store complete failed", extra={"task_id": task.id, "error": str(e)})
    return previous


class CompleteTaskTool(BaseTool):
    """Mark a task done. Agenda items become "discussed"."""

    async def call(self, ctx: ToolContext, *, task_id: str, **kwargs: Any) -> ToolResult:
        task = await get_task(ctx.db, ctx.user_id, task_id)
        if task is None:
            return ToolResult.fail(f"Task {task_id} not found")
        if task.status != TaskStatus.PENDING.value:
            return ToolResult.fail(f'"{task.title}" is already {task.status}')

        previous = await mark_complete(ctx, task)
        user = await get_or_create_user(ctx.db, ctx.user_id)
        user.total_tasks_completed += 1
        await ctx.db.flush()
        logger.info("complete_task", extra={"user_id": ctx.user_id, "task_id": task.id})

        person_name = task.person.name if task.person else None
        return ToolResult.ok(
            {"task": task_to_dict(task, person_name)},
            undo_action=UncompleteTask(task_id=task.id, previous_status=previous, description=f'complete "{task.title}"'),
            track_entities=TrackEntities(tasks=[task_ref(task, person_name)]),
        )


class DeleteTaskTool(BaseTool):
    async def call(self, ctx: ToolContext, *, task_id: str, **kwargs: Any) -> ToolResult:
        task = await get_task(ctx.db, ctx.user_id, task_id)
        if task is None:
            return ToolResult.fail(f"Task {task_id} not found")

        snapshot = snapshot_task(task)
        try:
            await ctx.task_store.delete(task)
        except Exception as e:
            logger.warning("task_store delete failed", extra={"task_id": task.id, "error": str(e)})
        await ctx.db.delete(task)
        await ctx.db.flush()
        logger.info("delete_task", extra={"user_id": ctx.user_id, "task_id": snapshot.id})

        return ToolResult.ok(
            {"deleted": {"id": snapshot.id, "title": snapshot.title}},
            undo_action=RestoreDeletedTask(snapshot=snapshot, description=f'delete "{snapshot.title}"'),
        )


class UndoLastActionParams(BaseModel):
    pass


class UndoLastActionTool(BaseTool):
    """Revert the most recent change. Never records an undo of its own."""

    def __init__(self, undo_manager: "UndoManager"):
        self._undo = undo_manager

    async def call(self, ctx: ToolContext, **kwargs: Any) -> ToolResult:
        return await self._undo.pop_and_invert(ctx.context, ctx)


def task_tool_defs(undo_manager: "UndoManager") -> list[ToolDefinition]:
    return [
        ToolDefinition(
            tool_id="lookup_tasks",
            description="Search tasks by type, status, context, priority, person, text or due date range.",
            parameters_model=LookupTasksParams,
            instance=LookupTasksTool(),
            kind=ToolKind.LOOKUP,
        ),
        ToolDefinition(
            tool_id="lookup_today_tasks",
            description="Tasks due today or marked for today in the user's timezone, with overdue items.",
            parameters_model=LookupTodayTasksParams,
            instance=LookupTodayTasksTool(),
            kind=ToolKind.LOOKUP,
        ),
        ToolDefinition(
            tool_id="create_task",
            description="Create one task. waiting and agenda tasks require person_name.",
            parameters_model=CreateTaskParams,
            instance=CreateTaskTool(),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="update_task",
            description="Change title, type, context, priority, due date, person or notes of a task.",
            parameters_model=UpdateTaskParams,
            instance=UpdateTaskTool(),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="complete_task",
            description='Mark a task complete. Agenda items are marked "discussed".',
            parameters_model=TaskIdParams,
            instance=CompleteTaskTool(),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="delete_task",
            description="Delete a task permanently (can be undone).",
            parameters_model=TaskIdParams,
            instance=DeleteTaskTool(),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="undo_last_action",
            description="Undo the user's most recent change.",
            parameters_model=UndoLastActionParams,
            instance=UndoLastActionTool(undo_manager),
            kind=ToolKind.ACTION,
        ),
    ]
