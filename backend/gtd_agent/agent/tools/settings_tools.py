"""Settings tools: read settings and stats, change timezone, digest, reminders, review schedule, pause/resume."""

import logging
from datetime import timedelta
from typing import Any, Literal

from pydantic import BaseModel, Field
from sqlalchemy import func, select

from gtd_agent.agent.tools.base_tool import BaseTool
from gtd_agent.agent.tools.common import get_or_create_user
from gtd_agent.agent.tools.tool_def import ToolDefinition, ToolKind
from gtd_agent.agent.tools.types import ToolContext, ToolResult
from gtd_agent.models import Task, User
from gtd_agent.schemas.enums import DayOfWeek, TaskContext, TaskPriority, TaskStatus
from gtd_agent.services.timezones import (
    format_time_of_day,
    friendly_timezone,
    local_now,
    naive_utc,
    normalize_timezone,
    parse_time_of_day,
)

logger = logging.getLogger(__name__)


def settings_view(user: User) -> dict[str, Any]:
    return {
        "timezone": user.timezone,
        "digest_time": user.digest_time,
        "meeting_reminder_hours": user.meeting_reminder_hours,
        "weekly_review_day": user.weekly_review_day,
        "weekly_review_time": user.weekly_review_time,
        "status": user.status,
    }


class EmptyParams(BaseModel):
    pass


class GetUserSettingsTool(BaseTool):
    async def call(self, ctx: ToolContext, **kwargs: Any) -> ToolResult:
        user = await get_or_create_user(ctx.db, ctx.user_id)
        return ToolResult.ok({"settings": settings_view(user)})


class GetProductivityStatsTool(BaseTool):
    async def call(self, ctx: ToolContext, **kwargs: Any) -> ToolResult:
        user = await get_or_create_user(ctx.db, ctx.user_id)
        result = await ctx.db.execute(
            select(Task.type, func.count(Task.id))
            .where(Task.user_id == ctx.user_id, Task.status == TaskStatus.PENDING.value)
            .group_by(Task.type)
        )
        open_by_type = {t: n for t, n in result.all()}

        week_start = local_now(ctx.now, user.timezone) - timedelta(days=7)
        completed_week = await ctx.db.scalar(
            select(func.count(Task.id)).where(
                Task.user_id == ctx.user_id,
                Task.completed_at.is_not(None),
                Task.completed_at >= naive_utc(week_start),
            )
        )
        return ToolResult.ok(
            {
                "open_by_type": open_by_type,
                "open_total": sum(open_by_type.values()),
                "completed_last_7_days": completed_week or 0,
                "total_captured": user.total_tasks_captured,
                "total_completed": user.total_tasks_completed,
            }
        )


class SetTimezoneParams(BaseModel):
    timezone: str = Field(..., min_length=1, description="City, abbreviation (CST, Pacific) or IANA name")


class SetTimezoneTool(BaseTool):
    async def call(self, ctx: ToolContext, *, timezone: str, **kwargs: Any) -> ToolResult:
        tz = normalize_timezone(timezone)
        if tz is None:
            return ToolResult.fail(f"Unknown timezone '{timezone}'. Try a city like 'Chicago' or 'Pacific'.")
        user = await get_or_create_user(ctx.db, ctx.user_id)
        previous = user.timezone
        user.timezone = tz
        await ctx.db.flush()
        logger.info("set_timezone", extra={"user_id": ctx.user_id, "timezone": tz})
        return ToolResult.ok({"timezone": tz, "label": friendly_timezone(tz), "previous": previous})


class SetDigestTimeParams(BaseModel):
    time: str = Field(..., description="Time of day, e.g. '7am', '7:30', '19:00'")


class SetDigestTimeTool(BaseTool):
    async def call(self, ctx: ToolContext, *, time: str, **kwargs: Any) -> ToolResult:
        hhmm = parse_time_of_day(time)
        if hhmm is None:
            return ToolResult.fail(f"Couldn't read '{time}' as a time. Try '7am' or '19:00'.")
        user = await get_or_create_user(ctx.db, ctx.user_id)
        user.digest_time = hhmm
        await ctx.db.flush()
        return ToolResult.ok({"digest_time": hhmm, "label": format_time_of_day(hhmm)})


class SetMeetingReminderHoursParams(BaseModel):
    hours: int = Field(..., ge=1, le=24)


class SetMeetingReminderHoursTool(BaseTool):
    async def call(self, ctx: ToolContext, *, hours: int, **kwargs: Any) -> ToolResult:
        user = await get_or_create_user(ctx.db, ctx.user_id)
        user.meeting_reminder_hours = hours
        await ctx.db.flush()
        return ToolResult.ok({"meeting_reminder_hours": hours})


class SetWeeklyReviewScheduleParams(BaseModel):
    day: DayOfWeek | None = None
    time: str | None = Field(default=None, description="Time of day, e.g. '5pm'")


class SetWeeklyReviewScheduleTool(BaseTool):
    async def call(
        self,
        ctx: ToolContext,
        *,
        day: DayOfWeek | None = None,
        time: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        if day is None and not time:
            return ToolResult.fail("Give a day, a time, or both")
        user = await get_or_create_user(ctx.db, ctx.user_id)
        if time:
            hhmm = parse_time_of_day(time)
            if hhmm is None:
                return ToolResult.fail(f"Couldn't read '{time}' as a time")
            user.weekly_review_time = hhmm
        if day is not None:
            user.weekly_review_day = day.value
        await ctx.db.flush()
        return ToolResult.ok(
            {
                "weekly_review_day": user.weekly_review_day,
                "weekly_review_time": user.weekly_review_time,
                "label": f"{user.weekly_review_day.title()} at {format_time_of_day(user.weekly_review_time)}",
            }
        )


class SetAccountStatusTool(BaseTool):
    def __init__(self, status: Literal["active", "paused"]):
        self._status = status

    async def call(self, ctx: ToolContext, **kwargs: Any) -> ToolResult:
        user = await get_or_create_user(ctx.db, ctx.user_id)
        if user.status == self._status:
            return ToolResult.ok({"status": user.status, "changed": False})
        user.status = self._status
        await ctx.db.flush()
        logger.info("account status changed", extra={"user_id": ctx.user_id, "status": self._status})
        return ToolResult.ok({"status": user.status, "changed": True})


class SetPreferenceParams(BaseModel):
    key: Literal["default_context", "priority_keyword"]
    value: str = Field(..., description="A context (computer/phone/home/outside) or a priority (today/this_week/soon)")
    keyword: str | None = Field(default=None, description="For priority_keyword: the word that implies the priority")


class SetPreferenceTool(BaseTool):
    """Explicit rules the classifier should follow, stored with the conversation context."""

    async def call(self, ctx: ToolContext, *, key: str, value: str, keyword: str | None = None, **kwargs: Any) -> ToolResult:
        prefs = ctx.context.preferences
        if key == "default_context":
            try:
                prefs.default_context = TaskContext(value.lower())
            except ValueError:
                return ToolResult.fail(f"'{value}' is not a context")
            return ToolResult.ok({"default_context": prefs.default_context.value})

        if not keyword or not keyword.strip():
            return ToolResult.fail("priority_keyword needs a keyword")
        try:
            priority = TaskPriority(value.lower())
        except ValueError:
            return ToolResult.fail(f"'{value}' is not a priority")
        prefs.priority_keywords[keyword.strip().lower()] = priority
        return ToolResult.ok({"priority_keyword": {keyword.strip().lower(): priority.value}})


def settings_tool_defs() -> list[ToolDefinition]:
    return [
        ToolDefinition(
            tool_id="get_user_settings",
            description="Current timezone, digest time, reminder hours, weekly review schedule and account status.",
            parameters_model=EmptyParams,
            instance=GetUserSettingsTool(),
            kind=ToolKind.LOOKUP,
        ),
        ToolDefinition(
            tool_id="get_productivity_stats",
            description="Open task counts by type, completions in the last 7 days and lifetime totals.",
            parameters_model=EmptyParams,
            instance=GetProductivityStatsTool(),
            kind=ToolKind.LOOKUP,
        ),
        ToolDefinition(
            tool_id="set_timezone",
            description="Set the user's timezone from a city, abbreviation or IANA name.",
            parameters_model=SetTimezoneParams,
            instance=SetTimezoneTool(),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="set_digest_time",
            description="Set when the daily digest is sent.",
            parameters_model=SetDigestTimeParams,
            instance=SetDigestTimeTool(),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="set_meeting_reminder_hours",
            description="Set how many hours (1-24) before a meeting to send the agenda reminder.",
            parameters_model=SetMeetingReminderHoursParams,
            instance=SetMeetingReminderHoursTool(),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="set_weekly_review_schedule",
            description="Set the weekly review day and/or time.",
            parameters_model=SetWeeklyReviewScheduleParams,
            instance=SetWeeklyReviewScheduleTool(),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="pause_account",
            description="Pause digests and reminders.",
            parameters_model=EmptyParams,
            instance=SetAccountStatusTool("paused"),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="resume_account",
            description="Resume digests and reminders.",
            parameters_model=EmptyParams,
            instance=SetAccountStatusTool("active"),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="set_preference",
            description="Remember a rule: a default context, or a keyword that implies a priority.",
            parameters_model=SetPreferenceParams,
            instance=SetPreferenceTool(),
            kind=ToolKind.ACTION,
        ),
    ]
