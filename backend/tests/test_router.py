"""
tests/test_router.py — intent routing, direct handlers and reply text

Test groups:
  - IntentRouter: exhaustiveness check, default handler, dispatch
  - DirectHandlers: settings changes, missing entities, undo, help
  - replies: capture confirmations, batch summary, clarification questions, failure wording
"""
from unittest.mock import AsyncMock

import pytest

from conftest import NOW, USER_ID, create
from gtd_agent.agent.handlers import DirectHandlers, build_intent_router
from gtd_agent.agent.replies import (
    HELP_TEXT,
    clarification_for,
    failure_text,
    format_batch,
    format_task_captured,
    uncertain_notice,
)
from gtd_agent.agent.router import IntentRouter, RouterConfigError, Turn
from gtd_agent.agent.tools.types import ToolResult
from gtd_agent.schemas.classification import Intent, IntentClassification, IntentEntities, TaskDraft
from gtd_agent.schemas.enums import DayOfWeek, IntentType, TaskType


def _intent(intent: IntentType, **entities) -> IntentClassification:
    return IntentClassification(confidence=0.9, intent=Intent(type=intent, entities=IntentEntities(**entities)))


def _turn(tool_ctx, classification: IntentClassification, text: str = "") -> Turn:
    return Turn(
        user_id=USER_ID,
        text=text,
        now=NOW,
        timezone="America/New_York",
        tool_ctx=tool_ctx,
        classification=classification,
    )


# ─────────────────────────────────────────────────────────────────────────────
# IntentRouter
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestIntentRouter:
    async def test_validate_requires_every_intent_without_default(self, executor):
        router = IntentRouter(DirectHandlers(executor).table())
        with pytest.raises(RouterConfigError, match="query_today"):
            router.validate()

    async def test_default_covers_the_rest(self, executor):
        router = build_intent_router(executor, default=AsyncMock(return_value="from default"))
        assert router.has_handler(IntentType.SHOW_HELP)
        assert not router.has_handler(IntentType.QUERY_TODAY)

    async def test_build_without_default_fails_at_construction(self, executor):
        with pytest.raises(RouterConfigError):
            build_intent_router(executor, default=None)

    async def test_unhandled_intent_goes_to_default(self, executor, tool_ctx):
        default = AsyncMock(return_value="from default")
        router = build_intent_router(executor, default=default)
        classification = _intent(IntentType.QUERY_TODAY)
        reply = await router.dispatch(_turn(tool_ctx, classification), classification)
        assert reply == "from default"
        default.assert_awaited_once()

    async def test_direct_intent_skips_default(self, executor, tool_ctx):
        default = AsyncMock(return_value="from default")
        router = build_intent_router(executor, default=default)
        classification = _intent(IntentType.SHOW_HELP)
        assert await router.dispatch(_turn(tool_ctx, classification), classification) == HELP_TEXT
        default.assert_not_awaited()


# ─────────────────────────────────────────────────────────────────────────────
# DirectHandlers
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestDirectHandlers:
    async def test_set_timezone(self, executor, tool_ctx):
        handlers = DirectHandlers(executor)
        c = _intent(IntentType.SET_TIMEZONE, timezone="Pacific")
        turn = _turn(tool_ctx, c)
        reply = await handlers.set_timezone(turn, c)
        assert reply == "Timezone set to Los Angeles (America/Los_Angeles)."
        assert [e.call.name for e in turn.executed] == ["set_timezone"]

    async def test_set_timezone_without_entity_asks(self, executor, tool_ctx):
        c = _intent(IntentType.SET_TIMEZONE)
        turn = _turn(tool_ctx, c)
        reply = await DirectHandlers(executor).set_timezone(turn, c)
        assert reply.startswith("What timezone")
        assert turn.executed == []

    async def test_reminder_hours_from_new_value(self, executor, tool_ctx):
        c = _intent(IntentType.SET_REMINDER_HOURS, new_value=" 3 ")
        reply = await DirectHandlers(executor).set_reminder_hours(_turn(tool_ctx, c), c)
        assert reply == "I'll remind you 3 hours before meetings."

    async def test_reminder_hours_out_of_range(self, executor, tool_ctx):
        c = _intent(IntentType.SET_REMINDER_HOURS, hours=48)
        reply = await DirectHandlers(executor).set_reminder_hours(_turn(tool_ctx, c), c)
        assert "1 to 24" in reply

    async def test_review_day_keeps_time(self, executor, tool_ctx):
        c = _intent(IntentType.SET_REVIEW_DAY, day_of_week=DayOfWeek.FRIDAY)
        reply = await DirectHandlers(executor).set_review_day(_turn(tool_ctx, c), c)
        assert reply == "Weekly review set for Friday at 5pm."

    async def test_bad_digest_time_reports_tool_error(self, executor, tool_ctx):
        c = _intent(IntentType.SET_DIGEST_TIME, time="whenever")
        reply = await DirectHandlers(executor).set_digest_time(_turn(tool_ctx, c), c)
        assert reply.startswith("Couldn't read 'whenever'")

    async def test_pause_then_resume(self, executor, tool_ctx):
        handlers = DirectHandlers(executor)
        c = _intent(IntentType.PAUSE_ACCOUNT)
        assert (await handlers.pause_account(_turn(tool_ctx, c), c)).startswith("Paused.")
        assert await handlers.pause_account(_turn(tool_ctx, c), c) == "You're already paused."
        c = _intent(IntentType.RESUME_ACCOUNT)
        assert (await handlers.resume_account(_turn(tool_ctx, c), c)).startswith("Welcome back")

    async def test_undo_last(self, executor, tool_ctx):
        await create(executor, tool_ctx, "Call mom")
        c = _intent(IntentType.UNDO_LAST)
        handlers = DirectHandlers(executor)
        assert await handlers.undo_last(_turn(tool_ctx, c), c) == 'Undone: create "Call mom"'
        assert await handlers.undo_last(_turn(tool_ctx, c), c) == "Nothing to undo"

    async def test_show_settings(self, executor, tool_ctx):
        c = _intent(IntentType.SHOW_SETTINGS)
        reply = await DirectHandlers(executor).show_settings(_turn(tool_ctx, c), c)
        assert "Timezone: New York" in reply
        assert "Daily digest: 8am" in reply
        assert "Weekly review: Sunday at 5pm" in reply

    async def test_show_stats(self, executor, tool_ctx):
        await create(executor, tool_ctx, "Call mom")
        c = _intent(IntentType.SHOW_STATS)
        reply = await DirectHandlers(executor).show_stats(_turn(tool_ctx, c), c)
        assert reply.splitlines()[0] == "Open: 1 (1 action)"


# ─────────────────────────────────────────────────────────────────────────────
# Reply text
# ─────────────────────────────────────────────────────────────────────────────

class TestReplies:
    def test_action_with_details(self):
        task = {"title": "Call dentist", "type": "action", "context": "phone", "priority": "this_week", "due_date": "2026-10-16"}
        assert format_task_captured(task) == "Added: Call dentist (phone, this week, due Fri Oct 16)"

    def test_waiting(self):
        task = {"title": "Budget numbers", "type": "waiting", "person": "Sarah"}
        assert format_task_captured(task) == "Waiting on Sarah: Budget numbers"

    def test_batch_with_failure_and_dropped(self):
        data = {
            "created": [{"title": "Buy milk", "type": "action"}],
            "failed": [{"item": {"title": "Budget", "type": "waiting"}, "error": "waiting tasks need a person"}],
        }
        text = format_batch(data, dropped=2)
        assert text.splitlines() == [
            "Added 1 item:",
            "- Added: Buy milk",
            "Couldn't add 1:",
            "- Budget (waiting tasks need a person)",
            "I only take 2 items at a time; 2 more were skipped. Send them again.",
        ]

    def test_clarification_questions(self):
        waiting = TaskDraft(title="Budget", type=TaskType.WAITING, missing_fields=["person_name"])
        untyped = TaskDraft(title="Budget", missing_fields=["type"])
        assert clarification_for(waiting) == 'Who are you waiting on for "Budget"?'
        assert clarification_for(untyped).startswith('Is "Budget" something you need to do')

    def test_uncertain_notice_dedupes(self):
        assert uncertain_notice(["create_task", "create_task"]).startswith("Heads up: create task timed out")

    def test_internal_failure_wording(self):
        crash = ToolResult.fail("create_task failed", internal=True)
        rejected = ToolResult.fail("invalid parameters for 'create_task': title: String should have at most 500 characters", internal=True)
        for result in (crash, rejected):
            assert failure_text(result) == "Something went wrong on my end, so nothing was changed. Please try again."
        assert failure_text(ToolResult.fail("waiting tasks need a person")) == "waiting tasks need a person"
        assert failure_text(ToolResult.fail("timeout", uncertain=True)) == "I'm not sure that went through."
