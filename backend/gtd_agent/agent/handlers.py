"""Direct intent handlers: deterministic replies that need no model round."""

import logging
from typing import Any

from gtd_agent.agent.executor import ExecutedCall, ToolCall, ToolExecutor
from gtd_agent.agent.replies import (
    HELP_TEXT,
    failure_text,
    format_settings,
    format_settings_change,
    format_stats,
)
from gtd_agent.agent.router import Handler, IntentRouter, Turn
from gtd_agent.agent.tools.types import ToolResult
from gtd_agent.schemas.classification import IntentClassification
from gtd_agent.schemas.enums import IntentType

logger = logging.getLogger(__name__)


class DirectHandlers:
    """Each handler runs its tool through the executor, so validation, undo and tracking stay uniform."""

    def __init__(self, executor: ToolExecutor):
        self._executor = executor

    async def _run(self, turn: Turn, tool: str, args: dict[str, Any] | None = None) -> ToolResult:
        call = ToolCall(name=tool, arguments=args or {}, call_id=f"direct_{tool}")
        result = await self._executor.execute(call, turn.tool_ctx)
        turn.executed.append(ExecutedCall(call=call, result=result))
        return result

    async def _change(self, turn: Turn, tool: str, args: dict[str, Any] | None = None) -> str:
        result = await self._run(turn, tool, args)
        if not result.success:
            return failure_text(result)
        return format_settings_change(tool, result.data or {})

    async def show_help(self, turn: Turn, c: IntentClassification) -> str:
        return HELP_TEXT

    async def show_settings(self, turn: Turn, c: IntentClassification) -> str:
        result = await self._run(turn, "get_user_settings")
        if not result.success:
            return failure_text(result)
        return format_settings(result.data["settings"])

    async def show_stats(self, turn: Turn, c: IntentClassification) -> str:
        result = await self._run(turn, "get_productivity_stats")
        if not result.success:
            return failure_text(result)
        return format_stats(result.data)

    async def set_timezone(self, turn: Turn, c: IntentClassification) -> str:
        e = c.intent.entities
        tz = e.timezone or e.new_value
        if not tz:
            return "What timezone are you in? A city like \"Chicago\" or \"Pacific\" works."
        return await self._change(turn, "set_timezone", {"timezone": tz})

    async def set_digest_time(self, turn: Turn, c: IntentClassification) -> str:
        e = c.intent.entities
        time = e.time or e.new_value
        if not time:
            return "What time should the daily digest arrive? For example \"7am\"."
        return await self._change(turn, "set_digest_time", {"time": time})

    async def set_reminder_hours(self, turn: Turn, c: IntentClassification) -> str:
        e = c.intent.entities
        hours = e.hours
        if hours is None and e.new_value and e.new_value.strip().isdigit():
            hours = int(e.new_value.strip())
        if hours is None:
            return "How many hours before a meeting should I remind you? (1 to 24)"
        if not 1 <= hours <= 24:
            return "Meeting reminders can be 1 to 24 hours ahead."
        return await self._change(turn, "set_meeting_reminder_hours", {"hours": hours})

    async def set_review_day(self, turn: Turn, c: IntentClassification) -> str:
        e = c.intent.entities
        if e.day_of_week is None:
            return "Which day do you want your weekly review?"
        args: dict[str, Any] = {"day": e.day_of_week.value}
        if e.time:
            args["time"] = e.time
        return await self._change(turn, "set_weekly_review_schedule", args)

    async def set_review_time(self, turn: Turn, c: IntentClassification) -> str:
        e = c.intent.entities
        time = e.time or e.new_value
        if not time:
            return "What time do you want your weekly review?"
        args: dict[str, Any] = {"time": time}
        if e.day_of_week is not None:
            args["day"] = e.day_of_week.value
        return await self._change(turn, "set_weekly_review_schedule", args)

    async def pause_account(self, turn: Turn, c: IntentClassification) -> str:
        return await self._change(turn, "pause_account")

    async def resume_account(self, turn: Turn, c: IntentClassification) -> str:
        return await self._change(turn, "resume_account")

    async def undo_last(self, turn: Turn, c: IntentClassification) -> str:
        result = await self._run(turn, "undo_last_action")
        if not result.success:
            return failure_text(result)
        return result.data.get("message", "Undone.")

    def table(self) -> dict[IntentType, Handler]:
        return {
            IntentType.SHOW_HELP: self.show_help,
            IntentType.SHOW_SETTINGS: self.show_settings,
            IntentType.SHOW_STATS: self.show_stats,
            IntentType.SET_TIMEZONE: self.set_timezone,
            IntentType.SET_DIGEST_TIME: self.set_digest_time,
            IntentType.SET_REMINDER_HOURS: self.set_reminder_hours,
            IntentType.SET_REVIEW_DAY: self.set_review_day,
            IntentType.SET_REVIEW_TIME: self.set_review_time,
            IntentType.PAUSE_ACCOUNT: self.pause_account,
            IntentType.RESUME_ACCOUNT: self.resume_account,
            IntentType.UNDO_LAST: self.undo_last,
        }


def build_intent_router(executor: ToolExecutor, default: Handler | None) -> IntentRouter:
    """Direct handlers plus a default for everything else. Validated before it is returned."""
    router = IntentRouter(DirectHandlers(executor).table(), default=default)
    router.validate()
    return router
