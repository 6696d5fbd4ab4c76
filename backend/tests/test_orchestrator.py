"""
tests/test_orchestrator.py — agent loop end to end (model doubles, real tools and database)

Test groups:
  - direct paths: capture, batch, unknown, clarification then answer, ambiguous names, typeless items
  - tool rounds: lookup then reply, round limit, model failure, tool messages
  - failed actions: timeout notice appended, crash details kept out of the reply
  - learning: a correction to the last created task is remembered
  - per-user serialization, different users in parallel
  - tool calls written as text
"""
import asyncio
import json
import logging
from datetime import timedelta
from typing import Any

import pytest
from pydantic import BaseModel
from sqlalchemy import func, select

from conftest import (
    NOW,
    USER_ID,
    agent_llm,
    call,
    classifier_llm,
    create,
    text_message,
    tool_calls_message,
)
from gtd_agent.agent.classifier import MessageClassifier
from gtd_agent.agent.executor import ToolExecutor
from gtd_agent.agent.normalization import unknown
from gtd_agent.agent.orchestrator import AgentOrchestrator, correction_trigger, parse_text_tool_calls, parse_tool_calls
from gtd_agent.agent.replies import FALLBACK_ERROR, FALLBACK_UNKNOWN, TOO_MANY_STEPS
from gtd_agent.agent.tools import BaseTool, ToolDefinition, ToolKind, ToolRegistry, ToolResult
from gtd_agent.models import Message, Person, Task


def _orchestrator(
    session_factory,
    context_manager,
    executor,
    *payloads: dict[str, Any],
    llm=None,
    **kwargs: Any,
) -> AgentOrchestrator:
    classifier = MessageClassifier(
        classifier_llm(*payloads), max_items=10, hint_threshold=0.3, hint_limit=10, timeout_seconds=5.0
    )
    return AgentOrchestrator(
        llm=llm or agent_llm(),
        classifier=classifier,
        executor=executor,
        context_manager=context_manager,
        session_factory=session_factory,
        **kwargs,
    )


def _task(title: str, type: str | None = "action", **fields: Any) -> dict[str, Any]:
    return {"type": "task", "confidence": 0.9, "needs_data_lookup": False, "task_capture": {"title": title, "type": type, **fields}}


def _intent(intent: str, **entities: Any) -> dict[str, Any]:
    return {"type": "intent", "confidence": 0.9, "intent": {"type": intent, "entities": entities}}


async def _tasks(session_factory) -> list[Task]:
    async with session_factory() as db:
        return list((await db.execute(select(Task).where(Task.user_id == USER_ID))).scalars().all())


# ─────────────────────────────────────────────────────────────────────────────
# Direct paths
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestDirectPaths:
    async def test_direct_capture(self, session_factory, context_manager, executor):
        llm = agent_llm()
        agent = _orchestrator(
            session_factory, context_manager, executor, _task("Call mom", context="phone", due_date="2026-10-15"), llm=llm
        )
        reply = await agent.handle_turn(USER_ID, "call mom tomorrow", NOW)

        assert reply == "Added: Call mom (phone, due Thu Oct 15)"
        llm.complete.assert_not_awaited()
        assert [t.title for t in await _tasks(session_factory)] == ["Call mom"]

    async def test_messages_are_logged(self, session_factory, context_manager, executor):
        agent = _orchestrator(session_factory, context_manager, executor, _task("Call mom"))
        await agent.handle_turn(USER_ID, "call mom", NOW)
        async with session_factory() as db:
            rows = (await db.execute(select(Message.direction, Message.content).order_by(Message.id))).all()
        assert [tuple(r) for r in rows] == [("inbound", "call mom"), ("outbound", "Added: Call mom")]

    async def test_batch_capture(self, session_factory, context_manager, executor, caplog):
        caplog.set_level(logging.INFO, logger="gtd_agent")
        payload = {
            "type": "multi_item",
            "confidence": 0.9,
            "items": [{"title": "Buy milk", "type": "action"}, {"title": "Learn piano", "type": "someday"}],
        }
        agent = _orchestrator(session_factory, context_manager, executor, payload)
        reply = await agent.handle_turn(USER_ID, "buy milk\nlearn piano someday", NOW)
        assert reply.splitlines()[0] == "Added 2 items:"
        assert len(await _tasks(session_factory)) == 2

    async def test_unknown(self, session_factory, context_manager, executor):
        agent = _orchestrator(session_factory, context_manager, executor, {"type": "unknown", "confidence": 0.1})
        assert await agent.handle_turn(USER_ID, "asdf", NOW) == FALLBACK_UNKNOWN

    async def test_clarify_then_answer_with_name(self, session_factory, context_manager, executor):
        agent = _orchestrator(
            session_factory,
            context_manager,
            executor,
            _task("Budget numbers", type="waiting"),
            {"type": "unknown", "confidence": 0.2},
        )
        question = await agent.handle_turn(USER_ID, "waiting on the budget numbers", NOW)
        assert question == 'Who are you waiting on for "Budget numbers"?'
        assert await _tasks(session_factory) == []

        reply = await agent.handle_turn(USER_ID, "Sarah", NOW + timedelta(minutes=1))
        assert reply == "Waiting on Sarah: Budget numbers"

        async with session_factory() as db:
            context = await context_manager.load(db, USER_ID, NOW + timedelta(minutes=2))
        assert context.session.active_flow is None

    async def test_clarify_then_typed_answer_merges(self, session_factory, context_manager, executor):
        agent = _orchestrator(
            session_factory,
            context_manager,
            executor,
            _task("Budget numbers", type=None),
            _task("Action", type="action"),
        )
        question = await agent.handle_turn(USER_ID, "budget numbers", NOW)
        assert question.startswith('Is "Budget numbers" something you need to do')

        reply = await agent.handle_turn(USER_ID, "I need to do it", NOW + timedelta(minutes=1))
        assert reply == "Added: Budget numbers"

    async def test_name_reply_classified_as_typeless_task(self, session_factory, context_manager, executor):
        agent = _orchestrator(
            session_factory,
            context_manager,
            executor,
            _task("Budget numbers", type="waiting"),
            _task("Sarah", type=None),
        )
        await agent.handle_turn(USER_ID, "waiting on the budget numbers", NOW)
        reply = await agent.handle_turn(USER_ID, "Sarah", NOW + timedelta(minutes=1))
        assert reply == "Waiting on Sarah: Budget numbers"
        assert [(t.title, t.type) for t in await _tasks(session_factory)] == [("Budget numbers", "waiting")]

    async def test_ambiguous_person_asks_which(self, session_factory, context_manager, executor, tool_ctx):
        for name in ("Sarah Smith", "Sarah Jones"):
            await executor.execute(call("create_person", {"name": name}), tool_ctx)
        await tool_ctx.db.commit()
        agent = _orchestrator(
            session_factory,
            context_manager,
            executor,
            _task("Budget numbers", type="waiting", person_name="Sarah"),
            {"type": "unknown", "confidence": 0.2},
        )
        question = await agent.handle_turn(USER_ID, "waiting on sarah for the budget numbers", NOW)
        assert question == "Which Sarah? Sarah Jones or Sarah Smith"
        assert await _tasks(session_factory) == []

        reply = await agent.handle_turn(USER_ID, "Sarah Jones", NOW + timedelta(minutes=1))
        assert reply == "Waiting on Sarah Jones: Budget numbers"
        async with session_factory() as db:
            assert await db.scalar(select(func.count(Person.id))) == 2

    async def test_multi_item_without_type_is_not_added_as_action(self, session_factory, context_manager, executor):
        payload = {
            "type": "multi_item",
            "confidence": 0.8,
            "items": [{"title": "Buy milk", "type": "action"}, {"title": "Budget review"}],
        }
        agent = _orchestrator(session_factory, context_manager, executor, payload)
        reply = await agent.handle_turn(USER_ID, "buy milk\nbudget review", NOW)
        assert reply.splitlines() == [
            "Added 1 item:",
            "- Added: Buy milk",
            "Couldn't add 1:",
            "- Budget review (not sure what kind of item this is)",
        ]
        assert [t.title for t in await _tasks(session_factory)] == ["Buy milk"]

    async def test_direct_intent(self, session_factory, context_manager, executor):
        llm = agent_llm()
        agent = _orchestrator(session_factory, context_manager, executor, _intent("set_timezone", timezone="Chicago"), llm=llm)
        assert await agent.handle_turn(USER_ID, "I'm in Chicago now", NOW) == "Timezone set to Chicago (America/Chicago)."
        llm.complete.assert_not_awaited()


# ─────────────────────────────────────────────────────────────────────────────
# Tool rounds
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestToolRounds:
    async def test_lookup_then_reply(self, session_factory, context_manager, executor):
        llm = agent_llm(
            tool_calls_message(("lookup_today_tasks", {})),
            text_message("<think>one task</think>You have 1 task today: Pay rent."),
        )
        agent = _orchestrator(
            session_factory,
            context_manager,
            executor,
            _task("Pay rent", priority="today"),
            _intent("query_today"),
            llm=llm,
        )
        await agent.handle_turn(USER_ID, "pay rent today", NOW)
        reply = await agent.handle_turn(USER_ID, "what's on today?", NOW + timedelta(minutes=1))

        assert reply == "You have 1 task today: Pay rent."
        messages = llm.complete.await_args_list[1].args[0]
        assert messages[0]["role"] == "system"
        assert "Classifier notes:" in messages[1]["content"]
        assert messages[2]["tool_calls"][0]["function"]["name"] == "lookup_today_tasks"
        tool_msg = json.loads(messages[3]["content"])
        assert tool_msg["success"] is True
        assert tool_msg["data"]["count"] == 1

    async def test_failed_tool_message_is_marked(self, session_factory, context_manager, executor):
        llm = agent_llm(
            tool_calls_message(("complete_task", {"task_id": "missing"})),
            text_message("I couldn't find that task."),
        )
        agent = _orchestrator(session_factory, context_manager, executor, _intent("complete_task"), llm=llm)
        assert await agent.handle_turn(USER_ID, "done with the thing", NOW) == "I couldn't find that task."
        messages = llm.complete.await_args_list[1].args[0]
        assert messages[-1]["content"].startswith("This failed: ")

    async def test_round_limit(self, session_factory, context_manager, executor):
        llm = agent_llm(*(tool_calls_message(("lookup_tasks", {})) for _ in range(2)))
        agent = _orchestrator(
            session_factory, context_manager, executor, _intent("query_actions"), llm=llm, max_tool_rounds=2
        )
        assert await agent.handle_turn(USER_ID, "show my actions", NOW) == TOO_MANY_STEPS
        assert llm.complete.await_count == 2

    async def test_model_failure(self, session_factory, context_manager, executor):
        llm = agent_llm(RuntimeError("connection reset"))
        agent = _orchestrator(session_factory, context_manager, executor, _intent("query_waiting"), llm=llm)
        assert await agent.handle_turn(USER_ID, "what am I waiting on?", NOW) == FALLBACK_ERROR

    async def test_empty_model_reply(self, session_factory, context_manager, executor):
        llm = agent_llm(text_message("<think>hmm</think>"))
        agent = _orchestrator(session_factory, context_manager, executor, _intent("query_projects"), llm=llm)
        assert await agent.handle_turn(USER_ID, "projects?", NOW) == FALLBACK_ERROR

    async def test_task_needing_lookup_goes_to_tool_round(self, session_factory, context_manager, executor):
        payload = _task("Ask Sarah about budget", type="agenda", person_name="Sarah")
        payload["needs_data_lookup"] = True
        llm = agent_llm(
            tool_calls_message(("create_task", {"title": "Budget", "type": "agenda", "person_name": "Sarah"})),
            text_message("Added to Sarah's agenda."),
        )
        agent = _orchestrator(session_factory, context_manager, executor, payload, llm=llm)
        assert await agent.handle_turn(USER_ID, "ask sarah about budget", NOW) == "Added to Sarah's agenda."
        assert [t.type for t in await _tasks(session_factory)] == ["agenda"]


# ─────────────────────────────────────────────────────────────────────────────
# Failed actions
# ─────────────────────────────────────────────────────────────────────────────

class _AnyParams(BaseModel):
    pass


class _HangingTool(BaseTool):
    async def call(self, ctx, **kwargs: Any) -> ToolResult:
        await asyncio.sleep(1.0)
        return ToolResult.ok({})


class _CrashingTool(BaseTool):
    async def call(self, ctx, **kwargs: Any) -> ToolResult:
        raise RuntimeError("connection reset by peer")


@pytest.mark.asyncio
class TestFailedActions:
    async def test_action_timeout_adds_notice(self, session_factory, context_manager, undo_manager):
        registry = ToolRegistry(
            [ToolDefinition("create_task", "hangs", _AnyParams, _HangingTool(), ToolKind.ACTION)],
            lookup_timeout=0.05,
            action_timeout=0.05,
        )
        agent = _orchestrator(
            session_factory, context_manager, ToolExecutor(registry, undo_manager), _task("Call mom")
        )
        reply = await agent.handle_turn(USER_ID, "call mom", NOW)
        first, notice = reply.split("\n\n")
        assert first == "Couldn't add that: I'm not sure that went through."
        assert notice.startswith("Heads up: create task timed out")

    async def test_crashing_action_reply_hides_details(self, session_factory, context_manager, undo_manager):
        registry = ToolRegistry(
            [ToolDefinition("create_task", "crashes", _AnyParams, _CrashingTool(), ToolKind.ACTION)],
            lookup_timeout=1.0,
            action_timeout=1.0,
        )
        agent = _orchestrator(
            session_factory, context_manager, ToolExecutor(registry, undo_manager), _task("Call mom")
        )
        reply = await agent.handle_turn(USER_ID, "call mom", NOW)
        assert reply == "Couldn't add that: Something went wrong on my end, so nothing was changed. Please try again."
        assert "create_task" not in reply


# ─────────────────────────────────────────────────────────────────────────────
# Learning
# ─────────────────────────────────────────────────────────────────────────────

class TestCorrectionTrigger:
    @pytest.mark.parametrize(
        "title, expected",
        [("Dentist appointment", "dentist"), ("Go to the gym", "gym"), ("Call mom", "call"), ("a b c", None)],
    )
    def test_first_meaningful_word(self, title, expected):
        assert correction_trigger(title) == expected


@pytest.mark.asyncio
class TestLearning:
    async def test_correction_to_last_created_task_is_learned(self, session_factory, context_manager, executor):
        llm = agent_llm(
            tool_calls_message(("update_task", {"task_id": "#1", "context": "phone"})),
            text_message("Moved to phone."),
        )
        agent = _orchestrator(
            session_factory,
            context_manager,
            executor,
            _task("Dentist appointment", context="computer"),
            _intent("set_task_context", context="phone"),
            llm=llm,
        )
        await agent.handle_turn(USER_ID, "dentist appointment", NOW)
        assert await agent.handle_turn(USER_ID, "no, that's a phone thing", NOW + timedelta(minutes=1)) == "Moved to phone."

        async with session_factory() as db:
            context = await context_manager.load(db, USER_ID, NOW + timedelta(minutes=2))
        [assoc] = context.patterns.word_associations
        assert (assoc.trigger, assoc.field, assoc.value) == ("dentist", "context", "phone")
        assert context.patterns.total_corrections == 1

    async def test_update_of_other_task_is_not_learned(self, session_factory, context_manager, executor, tool_ctx):
        older = await create(executor, tool_ctx, "Dentist appointment", context="computer")
        await tool_ctx.db.commit()
        llm = agent_llm(
            tool_calls_message(("update_task", {"task_id": older["id"], "context": "phone"})),
            text_message("Done."),
        )
        agent = _orchestrator(
            session_factory,
            context_manager,
            executor,
            _task("Buy milk"),
            _intent("set_task_context", context="phone"),
            llm=llm,
        )
        await agent.handle_turn(USER_ID, "buy milk", NOW)
        await agent.handle_turn(USER_ID, "dentist is a phone thing", NOW + timedelta(minutes=1))

        async with session_factory() as db:
            context = await context_manager.load(db, USER_ID, NOW + timedelta(minutes=2))
        assert context.patterns.word_associations == []


# ─────────────────────────────────────────────────────────────────────────────
# Per-user serialization
# ─────────────────────────────────────────────────────────────────────────────

class _GatedClassifier:
    def __init__(self):
        self.active = 0
        self.max_active = 0

    async def classify(self, message, context, now, **kwargs):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.05)
        self.active -= 1
        return unknown("test")


class _BarrierClassifier:
    """Returns only once every party is inside classify at the same time."""

    def __init__(self, parties: int):
        self.parties = parties
        self.arrived = 0
        self.all_in = asyncio.Event()

    async def classify(self, message, context, now, **kwargs):
        self.arrived += 1
        if self.arrived == self.parties:
            self.all_in.set()
        await asyncio.wait_for(self.all_in.wait(), timeout=2.0)
        return unknown("test")


@pytest.mark.asyncio
class TestSerialization:
    async def test_same_user_turns_do_not_overlap(self, session_factory, context_manager, executor):
        classifier = _GatedClassifier()
        agent = AgentOrchestrator(
            llm=agent_llm(),
            classifier=classifier,
            executor=executor,
            context_manager=context_manager,
            session_factory=session_factory,
        )
        replies = await asyncio.gather(*(agent.handle_turn(USER_ID, f"msg {i}", NOW) for i in range(3)))
        assert replies == [FALLBACK_UNKNOWN] * 3
        assert classifier.max_active == 1
        assert len(agent.locks) == 0
        async with session_factory() as db:
            assert await db.scalar(select(func.count(Message.id))) == 6

    async def test_different_users_run_in_parallel(self, session_factory, context_manager, executor):
        users = ["user-a", "user-b"]
        warmup = AgentOrchestrator(
            llm=agent_llm(),
            classifier=_GatedClassifier(),
            executor=executor,
            context_manager=context_manager,
            session_factory=session_factory,
        )
        for user_id in users:
            await warmup.handle_turn(user_id, "hi", NOW)

        classifier = _BarrierClassifier(parties=len(users))
        agent = AgentOrchestrator(
            llm=agent_llm(),
            classifier=classifier,
            executor=executor,
            context_manager=context_manager,
            session_factory=session_factory,
        )
        replies = await asyncio.gather(*(agent.handle_turn(u, "hello", NOW + timedelta(minutes=1)) for u in users))
        assert classifier.all_in.is_set()
        assert replies == [FALLBACK_UNKNOWN] * 2
        assert len(agent.locks) == 0

    async def test_turn_failure_returns_fallback(self, session_factory, context_manager, executor):
        classifier = _GatedClassifier()
        classifier.classify = None  # calling it raises TypeError inside the turn
        agent = AgentOrchestrator(
            llm=agent_llm(),
            classifier=classifier,
            executor=executor,
            context_manager=context_manager,
            session_factory=session_factory,
        )
        assert await agent.handle_turn(USER_ID, "hello", NOW) == FALLBACK_ERROR
        async with session_factory() as db:
            assert await db.scalar(select(func.count(Message.id))) == 0


# ─────────────────────────────────────────────────────────────────────────────
# Tool calls written as text
# ─────────────────────────────────────────────────────────────────────────────

class TestTextToolCalls:
    def test_tagged_single_call(self, registry):
        content = '<tool_call>{"name": "lookup_tasks", "arguments": {"search": "dentist"}}</tool_call>'
        [parsed] = parse_text_tool_calls(content, registry, 1)
        assert parsed.name == "lookup_tasks"
        assert json.loads(parsed.arguments) == {"search": "dentist"}
        assert parsed.call_id == "fallback_1_0"

    def test_fenced_list_with_parameters_key(self, registry):
        content = '```json\n{"tool_calls": [{"name": "lookup_people", "parameters": {}}, {"name": "nope"}]}\n```'
        parsed = parse_text_tool_calls(content, registry, 2)
        assert [c.name for c in parsed] == ["lookup_people"]

    def test_plain_text_is_not_a_call(self, registry):
        assert parse_text_tool_calls("You have 2 tasks today.", registry, 1) == []

    def test_native_calls_win(self, registry):
        message = tool_calls_message(("lookup_tasks", {}))["message"]
        message["content"] = '{"name": "lookup_people", "arguments": {}}'
        assert [c.name for c in parse_tool_calls(message, registry, 1)] == ["lookup_tasks"]

    def test_fallback_used_without_native_calls(self, registry):
        message = text_message('{"name": "lookup_people", "arguments": {}}')["message"]
        assert [c.name for c in parse_tool_calls(message, registry, 1)] == ["lookup_people"]
