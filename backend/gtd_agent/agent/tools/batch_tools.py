"""Batch tools. Each item is handled on its own; results report partial success."""

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from gtd_agent.agent.tools.base_tool import BaseTool
from gtd_agent.agent.tools.common import get_or_create_user, get_task, person_ref, snapshot_task, task_ref, task_to_dict
from gtd_agent.agent.tools.task_tools import CreateTaskParams, insert_task, mark_complete, push_to_task_store
from gtd_agent.agent.tools.tool_def import ToolDefinition, ToolKind
from gtd_agent.agent.tools.types import ToolContext, ToolResult
from gtd_agent.config import settings
from gtd_agent.schemas.context import PersonRef, TaskRef, TrackEntities
from gtd_agent.schemas.enums import TaskStatus
from gtd_agent.schemas.undo import DeleteCreatedTasks, RestoreDeletedTasks, UncompleteTasks

logger = logging.getLogger(__name__)


def _first_error(exc: ValidationError) -> str:
    """Short reason shown next to the item in the SMS reply."""
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ())) or "item"
    if loc == "type":
        return "not sure what kind of item this is"
    if err.get("type") in ("missing", "string_too_short"):
        return f"{loc} is missing"
    return f"{loc} is not valid"


class BatchCreateTasksParams(BaseModel):
    tasks: list[dict[str, Any]] = Field(
        ...,
        min_length=1,
        max_length=settings.max_batch_items,
        description="Items shaped like create_task parameters (title, type, context, priority, due_date, person_name)",
    )


class BatchCreateTasksTool(BaseTool):
    async def call(self, ctx: ToolContext, *, tasks: list[dict[str, Any]], **kwargs: Any) -> ToolResult:
        created: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []
        refs: list[TaskRef] = []
        people: list[PersonRef] = []

        for item in tasks[: ctx.max_batch_items]:
            try:
                params = CreateTaskParams.model_validate(item)
            except ValidationError as e:
                failed.append({"item": item, "error": _first_error(e)})
                continue
            try:
                task, person = await insert_task(ctx, params)
            except ValueError as e:
                failed.append({"item": item, "error": str(e)})
                continue
            await push_to_task_store(ctx, task)
            person_name = person.name if person else None
            created.append(task_to_dict(task, person_name))
            refs.append(task_ref(task, person_name))
            if person is not None:
                people.append(person_ref(person))

        for item in tasks[ctx.max_batch_items :]:
            failed.append({"item": item, "error": f"over the {ctx.max_batch_items}-item limit"})

        if created:
            user = await get_or_create_user(ctx.db, ctx.user_id)
            user.total_tasks_captured += len(created)
            await ctx.db.flush()
        logger.info(
            "batch_create_tasks",
            extra={"user_id": ctx.user_id, "created_count": len(created), "failed_count": len(failed)},
        )

        data = {"created": created, "failed": failed}
        if not created:
            return ToolResult(success=False, data=data, error="No tasks could be created")
        return ToolResult.ok(
            data,
            undo_action=DeleteCreatedTasks(
                task_ids=[t["id"] for t in created],
                description=f"add {len(created)} tasks",
            ),
            # Most recent first: the last item listed is the last one created.
            track_entities=TrackEntities(tasks=list(reversed(refs)), people=people, last_created_id=refs[-1].id),
        )


class TaskIdsParams(BaseModel):
    task_ids: list[str] = Field(..., min_length=1, max_length=50)


class BatchCompleteTasksTool(BaseTool):
    async def call(self, ctx: ToolContext, *, task_ids: list[str], **kwargs: Any) -> ToolResult:
        completed: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []
        for task_id in dict.fromkeys(task_ids):
            task = await get_task(ctx.db, ctx.user_id, task_id)
            if task is None:
                failed.append({"item": task_id, "error": "not found"})
                continue
            if task.status != TaskStatus.PENDING.value:
                failed.append({"item": task_id, "error": f"already {task.status}"})
                continue
            await mark_complete(ctx, task)
            completed.append(task_to_dict(task, task.person.name if task.person else None))

        if completed:
            user = await get_or_create_user(ctx.db, ctx.user_id)
            user.total_tasks_completed += len(completed)
            await ctx.db.flush()
        logger.info(
            "batch_complete_tasks",
            extra={"user_id": ctx.user_id, "completed_count": len(completed), "failed_count": len(failed)},
        )

        data = {"completed": completed, "failed": failed}
        if not completed:
            return ToolResult(success=False, data=data, error="No tasks were completed")
        return ToolResult.ok(
            data,
            undo_action=UncompleteTasks(
                task_ids=[t["id"] for t in completed],
                description=f"complete {len(completed)} tasks",
            ),
        )


class BatchDeleteTasksTool(BaseTool):
    async def call(self, ctx: ToolContext, *, task_ids: list[str], **kwargs: Any) -> ToolResult:
        snapshots = []
        failed: list[dict[str, Any]] = []
        for task_id in dict.fromkeys(task_ids):
            task = await get_task(ctx.db, ctx.user_id, task_id)
            if task is None:
                failed.append({"item": task_id, "error": "not found"})
                continue
            snapshots.append(snapshot_task(task))
            try:
                await ctx.task_store.delete(task)
            except Exception as e:
                logger.warning("task_store delete failed", extra={"task_id": task.id, "error": str(e)})
            await ctx.db.delete(task)
        await ctx.db.flush()
        logger.info(
            "batch_delete_tasks",
            extra={"user_id": ctx.user_id, "deleted_count": len(snapshots), "failed_count": len(failed)},
        )

        data = {"deleted": [{"id": s.id, "title": s.title} for s in snapshots], "failed": failed}
        if not snapshots:
            return ToolResult(success=False, data=data, error="No tasks were deleted")
        return ToolResult.ok(
            data,
            undo_action=RestoreDeletedTasks(snapshots=snapshots, description=f"delete {len(snapshots)} tasks"),
        )


def batch_tool_defs() -> list[ToolDefinition]:
    return [
        ToolDefinition(
            tool_id="batch_create_tasks",
            description=f"Create several tasks at once (max {settings.max_batch_items}). Bad items are reported, the rest are created.",
            parameters_model=BatchCreateTasksParams,
            instance=BatchCreateTasksTool(),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="batch_complete_tasks",
            description="Complete several tasks by id.",
            parameters_model=TaskIdsParams,
            instance=BatchCompleteTasksTool(),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="batch_delete_tasks",
            description="Delete several tasks by id (can be undone).",
            parameters_model=TaskIdsParams,
            instance=BatchDeleteTasksTool(),
            kind=ToolKind.ACTION,
        ),
    ]
