"""Agent loop: classify, route, then a direct reply, a clarification or bounded tool rounds."""

import json
import logging
import re
from datetime import datetime
from json import JSONDecodeError
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gtd_agent.agent.classifier import MessageClassifier
from gtd_agent.agent.context_manager import ConversationContextManager, learn_correction
from gtd_agent.agent.executor import ExecutedCall, ToolCall, ToolExecutor
from gtd_agent.agent.handlers import build_intent_router
from gtd_agent.agent.locks import UserLocks
from gtd_agent.agent.normalization import missing_fields
from gtd_agent.agent.prompts import AGENT_SYSTEM_PROMPT, build_system_prompt, memory_summary
from gtd_agent.agent.replies import (
    FALLBACK_ERROR,
    FALLBACK_UNKNOWN,
    TOO_MANY_STEPS,
    clarification_for,
    failure_text,
    format_batch,
    format_task_captured,
    uncertain_notice,
)
from gtd_agent.agent.router import Turn
from gtd_agent.agent.tools.common import get_or_create_user
from gtd_agent.agent.tools.message_tools import recent_messages
from gtd_agent.agent.tools.tool_def import ToolRegistry
from gtd_agent.agent.tools.types import ToolContext
from gtd_agent.models import Message, User
from gtd_agent.schemas.classification import (
    ClarificationClassification,
    IntentClassification,
    MultiItemClassification,
    TaskClassification,
    TaskDraft,
)
from gtd_agent.schemas.context import ActiveFlow, Correction
from gtd_agent.services.llm import LLMClient
from gtd_agent.services.task_store import NullTaskStore, TaskStore
from gtd_agent.services.timezones import as_utc, local_now, naive_utc

logger = logging.getLogger(__name__)

_DRAFT_FIELDS = ("type", "context", "priority", "due_date", "person_name", "notes")
_CORRECTABLE = {"context": "context", "priority": "priority", "type": "type", "person_id": "person_name"}
_STOPWORDS = frozenset(
    "a an and the to for of on in at with about from my me i re up get go do is it this that".split()
)
_WORD_RE = re.compile(r"[a-z][a-z']+")
_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)


def correction_trigger(title: str) -> str | None:
    """First meaningful word of a title: the word a correction is learned against."""
    for word in _WORD_RE.findall(title.lower()):
        if len(word) >= 3 and word not in _STOPWORDS:
            return word
    return None


def parse_text_tool_calls(content: str, registry: ToolRegistry, round_no: int) -> list[ToolCall]:
    """Tool calls written as JSON in the text (model bypassed function calling)."""
    if not content or not content.strip():
        return []
    stripped = content.strip()
    for tag in ("tool_call", "function-call"):
        open_tag, close_tag = f"<{tag}>", f"</{tag}>"
        if open_tag in stripped and close_tag in stripped:
            start = stripped.find(open_tag) + len(open_tag)
            end = stripped.find(close_tag, start)
            if end != -1:
                stripped = stripped[start:end].strip()
            break
    if stripped.startswith("```"):
        lines = stripped.split("\n")
        end = len(lines) - 1 if lines[-1].strip() == "```" else len(lines)
        stripped = "\n".join(lines[1:end]).strip()
    if not (stripped.startswith("{") and stripped.endswith("}")):
        return []
    try:
        obj = json.loads(stripped)
    except JSONDecodeError:
        return []
    if not isinstance(obj, dict):
        return []

    entries = obj["tool_calls"] if isinstance(obj.get("tool_calls"), list) else [obj]
    calls: list[ToolCall] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            continue
        name = entry.get("name")
        if not isinstance(name, str) or name not in registry:
            continue
        arguments = entry.get("arguments", entry.get("parameters"))
        if isinstance(arguments, dict):
            raw_args = json.dumps(arguments, ensure_ascii=False)
        elif isinstance(arguments, str):
            raw_args = arguments
        else:
            raw_args = "{}"
        calls.append(ToolCall(name=name, arguments=raw_args, call_id=f"fallback_{round_no}_{i}"))
    return calls


def parse_tool_calls(message: dict[str, Any], registry: ToolRegistry, round_no: int) -> list[ToolCall]:
    calls: list[ToolCall] = []
    for i, tc in enumerate(message.get("tool_calls") or []):
        fn = tc.get("function") or {}
        name = fn.get("name")
        if not name:
            continue
        calls.append(ToolCall(name=name, arguments=fn.get("arguments") or "{}", call_id=tc.get("id") or f"call_{round_no}_{i}"))
    if calls:
        return calls
    calls = parse_text_tool_calls(message.get("content") or "", registry, round_no)
    if calls:
        logger.warning("agent: detected tool call in text", extra={"names": [c.name for c in calls]})
    return calls


def _draft_args(draft: TaskDraft) -> dict[str, Any]:
    return draft.model_dump(mode="json", exclude={"missing_fields"}, exclude_none=True)


class AgentOrchestrator:
    """One instance per process. `handle_turn` serializes turns per user and always returns text."""

    def __init__(
        self,
        *,
        llm: LLMClient,
        classifier: MessageClassifier,
        executor: ToolExecutor,
        context_manager: ConversationContextManager,
        session_factory: async_sessionmaker[AsyncSession],
        task_store: TaskStore | None = None,
        locks: UserLocks | None = None,
        max_tool_rounds: int = 4,
        max_batch_items: int = 10,
        max_tool_output_chars: int = 6000,
        concurrent_lookups: bool = True,
    ):
        self._llm = llm
        self._classifier = classifier
        self._executor = executor
        self._registry = executor.registry
        self._contexts = context_manager
        self._session_factory = session_factory
        self._task_store = task_store or NullTaskStore()
        self.locks = locks or UserLocks()
        self._max_rounds = max_tool_rounds
        self._max_batch_items = max_batch_items
        self._max_output_chars = max_tool_output_chars
        self._concurrent_lookups = concurrent_lookups
        self.router = build_intent_router(executor, default=self._intent_tool_round)

    async def handle_turn(self, user_id: str, text: str, now: datetime | None = None) -> str:
        now = as_utc(now)
        async with self.locks.hold(user_id):
            try:
                async with self._session_factory() as db:
                    reply = await self._run_turn(db, user_id, text, now)
                    await db.commit()
                    return reply
            except Exception:
                logger.exception("agent: turn failed", extra={"user_id": user_id})
                return FALLBACK_ERROR

    async def _run_turn(self, db: AsyncSession, user_id: str, text: str, now: datetime) -> str:
        first_contact = await db.get(User, user_id) is None
        user = await get_or_create_user(db, user_id)
        context = await self._contexts.load(db, user_id, now)
        if first_contact:
            # Account rows must be visible to lookups running on their own sessions.
            await db.commit()
        context = await self._contexts.refresh_entities(db, context, now)
        recent = await recent_messages(db, user_id)
        db.add(Message(user_id=user_id, direction="inbound", content=text, created_at=naive_utc(now)))

        classification = await self._classifier.classify(text, context, now, timezone=user.timezone, recent=recent)
        tool_ctx = ToolContext(
            user_id=user_id,
            db=db,
            context=context,
            now=now,
            task_store=self._task_store,
            undo_stack_cap=self._contexts.undo_cap,
            recent_cap=self._contexts.recent_cap,
            max_batch_items=self._max_batch_items,
            session_factory=self._session_factory if self._concurrent_lookups else None,
        )
        turn = Turn(
            user_id=user_id,
            text=text,
            now=now,
            timezone=user.timezone,
            tool_ctx=tool_ctx,
            classification=classification,
        )

        reply = await self._route(turn)
        uncertain = turn.uncertain_tools
        if uncertain:
            reply = f"{reply}\n\n{uncertain_notice(uncertain)}"
        self._learn_corrections(turn)

        await self._contexts.save(db, tool_ctx.context, now)
        db.add(Message(user_id=user_id, direction="outbound", content=reply, created_at=naive_utc(now)))
        logger.info(
            "agent: turn done",
            extra={"user_id": user_id, "type": classification.type, "calls": len(turn.executed)},
        )
        return reply

    # --- routing -------------------------------------------------------------

    def _set_flow(self, turn: Turn, flow: ActiveFlow | None) -> None:
        ctx = turn.tool_ctx
        ctx.context.session = ctx.context.session.model_copy(update={"active_flow": flow})

    def _pending_draft(self, turn: Turn) -> TaskDraft | None:
        flow = turn.tool_ctx.context.session.active_flow
        if flow is None or not flow.state.get("draft"):
            return None
        return TaskDraft.model_validate(flow.state["draft"])

    async def _route(self, turn: Turn) -> str:
        c = turn.classification
        pending = self._pending_draft(turn)

        answered = self._answer_person(turn, pending)
        if answered is not None:
            self._set_flow(turn, None)
            return await self._capture(turn, answered)

        if isinstance(c, TaskClassification):
            draft = self._merge_pending(c.task_capture, pending)
            if not draft.is_complete:
                return self._clarify(turn, clarification_for(draft), draft)
            self._set_flow(turn, None)
            if c.needs_data_lookup:
                return await self._tool_round(turn)
            return await self._capture(turn, draft)

        if isinstance(c, ClarificationClassification):
            return self._clarify(turn, c.clarification_question, c.task_capture)

        self._set_flow(turn, None)
        if isinstance(c, MultiItemClassification):
            if c.needs_data_lookup:
                return await self._tool_round(turn)
            return await self._capture_batch(turn, c)
        if isinstance(c, IntentClassification):
            return await self.router.dispatch(turn, c)
        return FALLBACK_UNKNOWN

    def _merge_pending(self, draft: TaskDraft, pending: TaskDraft | None) -> TaskDraft:
        """A reply that fills a field the pending draft was missing completes that draft."""
        if pending is None:
            return draft
        if not any(getattr(draft, f) is not None for f in pending.missing_fields):
            return draft
        update = {f: getattr(draft, f) for f in _DRAFT_FIELDS if getattr(draft, f) is not None}
        merged = pending.model_copy(update=update)
        return merged.model_copy(update={"missing_fields": missing_fields(merged.type, merged.person_name)})

    def _answer_person(self, turn: Turn, pending: TaskDraft | None) -> TaskDraft | None:
        """A short bare reply to "who are you waiting on" is the person's name."""
        if pending is None or pending.missing_fields != ["person_name"]:
            return None
        c = turn.classification
        if isinstance(c, (MultiItemClassification, IntentClassification)):
            return None
        # A bare name often comes back as a typeless task titled with the name.
        if isinstance(c, TaskClassification) and (c.task_capture.type is not None or c.task_capture.person_name):
            return None
        words = turn.text.strip().rstrip(".!").split()
        if not 1 <= len(words) <= 3 or any(any(ch.isdigit() for ch in w) for w in words):
            return None
        name = " ".join(words)
        return pending.model_copy(update={"person_name": name, "missing_fields": []})

    def _clarify(self, turn: Turn, question: str, draft: TaskDraft | None) -> str:
        state: dict[str, Any] = {"question": question, "original_message": turn.text}
        if draft is not None:
            state["draft"] = draft.model_dump(mode="json")
        self._set_flow(turn, ActiveFlow(kind="clarification", state=state, started_at=turn.now))
        logger.info("agent: clarify", extra={"user_id": turn.user_id, "missing": draft.missing_fields if draft else None})
        return question

    async def _direct(self, turn: Turn, tool: str, args: dict[str, Any]) -> ExecutedCall:
        call = ToolCall(name=tool, arguments=args, call_id=f"direct_{tool}")
        executed = ExecutedCall(call=call, result=await self._executor.execute(call, turn.tool_ctx))
        turn.executed.append(executed)
        return executed

    async def _capture(self, turn: Turn, draft: TaskDraft) -> str:
        result = (await self._direct(turn, "create_task", _draft_args(draft))).result
        if not result.success and result.data and result.data.get("people"):
            # Several people share the name: ask which one, keep the draft.
            retry = draft.model_copy(update={"person_name": None, "missing_fields": ["person_name"]})
            return self._clarify(turn, result.error, retry)
        if not result.success:
            return f"Couldn't add that: {failure_text(result)}"
        return format_task_captured(result.data["task"])

    async def _capture_batch(self, turn: Turn, c: MultiItemClassification) -> str:
        items = [_draft_args(d) for d in c.items]
        result = (await self._direct(turn, "batch_create_tasks", {"tasks": items})).result
        if result.data is None:
            return f"Couldn't add those: {failure_text(result)}"
        return format_batch(result.data, c.dropped_items)

    # --- tool round ----------------------------------------------------------

    async def _intent_tool_round(self, turn: Turn, c: IntentClassification) -> str:
        return await self._tool_round(turn)

    def _classification_note(self, turn: Turn) -> str:
        c = turn.classification
        if isinstance(c, IntentClassification):
            note = {
                "intent": c.intent.type.value,
                "entities": c.intent.entities.model_dump(mode="json", exclude_none=True),
                "lookups": [l.model_dump(mode="json", exclude_none=True) for l in c.required_lookups],
            }
        elif isinstance(c, TaskClassification):
            note = {"task": _draft_args(c.task_capture)}
        elif isinstance(c, MultiItemClassification):
            note = {"items": [_draft_args(d) for d in c.items]}
        else:
            note = {"type": c.type}
        return json.dumps(note, ensure_ascii=False)

    def _tool_message(self, executed: ExecutedCall) -> str:
        content = json.dumps(executed.result.for_model(), ensure_ascii=False, default=str)
        if len(content) > self._max_output_chars:
            content = content[: self._max_output_chars] + "…(truncated)"
        if not executed.result.success:
            content = f"This failed: {content}"
        return content

    async def _tool_round(self, turn: Turn) -> str:
        local = local_now(turn.now, turn.timezone)
        system = build_system_prompt(
            AGENT_SYSTEM_PROMPT,
            self._registry.catalog_section(),
            f"{local.strftime('%Y-%m-%d %H:%M (%A)')} {turn.timezone}",
            memory=memory_summary(turn.tool_ctx.context),
        )
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system},
            {"role": "user", "content": f"{turn.text}\n\n(Classifier notes: {self._classification_note(turn)})"},
        ]
        tools = self._registry.openai_tools()

        for round_no in range(1, self._max_rounds + 1):
            try:
                response = await self._llm.complete(messages, tools=tools)
            except Exception as e:
                logger.error(
                    "agent: model call failed",
                    extra={"user_id": turn.user_id, "round": round_no, "error": f"{type(e).__name__}: {e}"},
                )
                return FALLBACK_ERROR
            message = response.get("message", response) if isinstance(response, dict) else {}
            calls = parse_tool_calls(message, self._registry, round_no)
            logger.info("agent: round", extra={"user_id": turn.user_id, "round": round_no, "calls": [c.name for c in calls]})

            if not calls:
                text = _THINK_RE.sub("", message.get("content") or "").strip()
                return text or FALLBACK_ERROR

            messages.append(
                {
                    "role": "assistant",
                    "content": message.get("content") or "",
                    "tool_calls": [
                        {
                            "id": c.call_id,
                            "type": "function",
                            "function": {
                                "name": c.name,
                                "arguments": c.arguments if isinstance(c.arguments, str) else json.dumps(c.arguments),
                            },
                        }
                        for c in calls
                    ],
                }
            )
            executed = await self._executor.execute_round(calls, turn.tool_ctx)
            turn.executed.extend(executed)
            for e in executed:
                messages.append({"role": "tool", "tool_call_id": e.call.call_id, "content": self._tool_message(e)})

        logger.warning("agent: tool round limit reached", extra={"user_id": turn.user_id, "rounds": self._max_rounds})
        return TOO_MANY_STEPS

    # --- learning ------------------------------------------------------------

    def _learn_corrections(self, turn: Turn) -> None:
        context = turn.tool_ctx.context
        last_created = context.session.last_created_task_id
        if last_created is None:
            return
        for e in turn.executed:
            if e.call.name != "update_task" or not e.result.success:
                continue
            task = e.result.data["task"]
            if task["id"] != last_created:
                continue
            trigger = correction_trigger(task["title"])
            if trigger is None:
                continue
            for changed in e.result.data.get("changed", []):
                field = _CORRECTABLE.get(changed)
                if field is None:
                    continue
                value = task["person"] if field == "person_name" else task[field]
                if value is None:
                    continue
                context.patterns = learn_correction(
                    context.patterns, Correction(trigger=trigger, field=field, value=str(value)), turn.now
                )
                logger.info(
                    "agent: learned correction",
                    extra={"user_id": turn.user_id, "trigger": trigger, "field": field, "value": value},
                )
