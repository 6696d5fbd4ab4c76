"""Prompt templates and builders for the classifier and the tool-calling agent."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from gtd_agent.models import Message
from gtd_agent.schemas.context import ConversationContext, WordAssociation
from gtd_agent.schemas.enums import IntentType

CLASSIFIER_SYSTEM_PROMPT = """You classify SMS messages sent to a GTD (Getting Things Done) assistant. Call classify_message exactly once.

Types:
- task: the user captures ONE new item. Fill task_capture.
- multi_item: several items in one message (bullets, numbered lines, line breaks, "also", "plus", meeting notes, brain dumps). Fill items; give EVERY item its own type.
- intent: the user wants to query, complete, edit, undo, manage people or change settings. Fill intent {type, entities} and required_lookups.
- needs_clarification: too vague to act on. Fill clarification_question, and task_capture with whatever is known.
- unknown: cannot be understood.

Task types:
- action: one next step the user can do (call, email, buy, fix, schedule, review).
- waiting: someone else owes the user something ("waiting on", "asked Sarah for"). person_name is REQUIRED.
- agenda: a topic to raise with a person in a meeting ("ask Mike about", "discuss with"). person_name is REQUIRED. No context.
- project: a multi-step outcome ("plan", "organize", "launch").
- someday: not committed ("someday", "maybe", "eventually").
If you cannot tell the type of an item, leave type empty rather than guessing.

Fields: context is computer | phone | home | outside (call/text/email -> phone; write/code/research -> computer; buy/pick up/errands -> outside; chores -> home). priority is today | this_week | soon. due_date is YYYY-MM-DD relative to the current date below. person_name is the name exactly as written; never look it up.

needs_data_lookup:
- false for a clear single task capture, for help, and for settings changes (timezone, digest time, reminder hours, review day/time, pause, resume) and "undo".
- true whenever answering needs current data: listing or searching tasks, anything about a named person, completing or editing an existing task by description, bulk operations, stats.

Intent types: {intent_types}."""

AGENT_SYSTEM_PROMPT = """You are a GTD assistant that answers over SMS. Use the tools to look things up and make changes, then reply in one short plain-text message (no markdown, under 320 characters when possible).

Rules:
- Look up before you change: find the task or person first, then act on the id you got back.
- You may refer to the n-th item of the latest results as "#1", "#2"… in id parameters.
- Never invent ids. If a lookup finds nothing, say so instead of acting.
- If a tool failed, explain briefly and do not repeat the same call.
- If an action timed out, tell the user it may not have completed; do not retry it.
- Waiting and agenda tasks always need a person.

{tools}

Current time: {current_time}"""


class _RawTaskDraft(BaseModel):
    title: str | None = None
    type: Literal["action", "project", "waiting", "someday", "agenda"] | None = None
    context: Literal["computer", "phone", "home", "outside"] | None = None
    priority: Literal["today", "this_week", "soon"] | None = None
    due_date: str | None = Field(default=None, description="YYYY-MM-DD")
    person_name: str | None = None


class _RawIntent(BaseModel):
    type: str
    entities: dict[str, Any] = Field(default_factory=dict)


class _RawLookup(BaseModel):
    type: Literal["people", "tasks", "person_agenda", "settings"]
    query: str | None = None
    filter: dict[str, str] = Field(default_factory=dict)


class ClassifyMessageParams(BaseModel):
    """Schema of the forced classify_message call. Normalization still checks every field."""

    type: Literal["task", "multi_item", "intent", "needs_clarification", "unknown"]
    confidence: float = Field(..., description="0.0 to 1.0")
    needs_data_lookup: bool
    reasoning: str | None = None
    task_capture: _RawTaskDraft | None = None
    items: list[_RawTaskDraft] | None = None
    intent: _RawIntent | None = None
    required_lookups: list[_RawLookup] | None = None
    clarification_question: str | None = None


CLASSIFY_SCHEMA_NAME = "classify_message"
CLASSIFY_SCHEMA = ClassifyMessageParams.model_json_schema()


def ranked_hints(associations: list[WordAssociation], threshold: float, limit: int) -> list[WordAssociation]:
    """Learned associations worth mentioning, strongest first. Advisory only."""
    eligible = [a for a in associations if a.confidence >= threshold]
    return sorted(eligible, key=lambda a: (a.confidence, a.occurrences), reverse=True)[:limit]


def _preferences_section(context: ConversationContext) -> list[str]:
    prefs = context.preferences
    lines: list[str] = []
    if prefs.default_context:
        lines.append(f"- Default context when none is implied: {prefs.default_context.value}")
    for keyword, priority in prefs.priority_keywords.items():
        lines.append(f'- "{keyword}" means priority {priority.value}')
    for alias, meaning in prefs.date_aliases.items():
        lines.append(f'- "{alias}" means {meaning}')
    return lines


def build_classifier_messages(
    message: str,
    context: ConversationContext,
    local_time: datetime,
    recent: list[Message] | None = None,
    *,
    hint_threshold: float,
    hint_limit: int,
) -> list[dict[str, Any]]:
    system = CLASSIFIER_SYSTEM_PROMPT.replace("{intent_types}", ", ".join(t.value for t in IntentType))
    parts = [f"Current date: {local_time.strftime('%A, %B %d, %Y %H:%M')} ({local_time.date().isoformat()})"]

    prefs = _preferences_section(context)
    if prefs:
        parts.append("User rules:\n" + "\n".join(prefs))

    hints = ranked_hints(context.patterns.word_associations, hint_threshold, hint_limit)
    if hints:
        parts.append(
            "Learned from past corrections (strongest first, use as hints):\n"
            + "\n".join(f'- "{h.trigger}" -> {h.field}={h.value} ({h.confidence:.2f})' for h in hints)
        )

    flow = context.session.active_flow
    if flow is not None and flow.kind == "clarification":
        question = flow.state.get("question", "")
        draft = flow.state.get("draft")
        parts.append(
            f'The assistant just asked: "{question}". The message below is probably the answer.'
            + (f" Partial task so far: {draft}. Return the completed task." if draft else "")
        )

    if recent:
        parts.append(
            "Recent conversation:\n"
            + "\n".join(f"{'User' if m.direction == 'inbound' else 'Assistant'}: {m.content[:200]}" for m in recent)
        )

    parts.append(f"Message:\n{message}")
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": "\n\n".join(parts)},
    ]


def memory_summary(context: ConversationContext) -> str:
    """Short-term memory block for the agent prompt."""
    session = context.session
    lines: list[str] = []
    if session.recent_tasks:
        lines.append("Recently shown or created tasks (most recent first):")
        lines.extend(
            f"  #{i} {t.title} [{t.type or '?'}{', ' + t.person_name if t.person_name else ''}] id={t.id}"
            for i, t in enumerate(session.recent_tasks, start=1)
        )
    if session.last_created_task_id:
        lines.append(f"Last created task id: {session.last_created_task_id}")
    if session.recent_people:
        lines.append("Recently mentioned people: " + ", ".join(f"{p.name} (id={p.id})" for p in session.recent_people))
    if context.entities.people:
        lines.append("Known people: " + ", ".join(p.name for p in context.entities.people[:30]))
    if session.undo_stack:
        lines.append(f"Undo available for: {session.undo_stack[-1].description or session.undo_stack[-1].type}")
    prefs = _preferences_section(context)
    if prefs:
        lines.append("User rules:")
        lines.extend(f"  {p}" for p in prefs)
    return "\n".join(lines) if lines else "No recent activity."


def build_system_prompt(template: str, tools_section: str, current_time: str, memory: str = "") -> str:
    """Fill the agent template. Tools also go through the API; tools_section is the short catalog."""
    base = template.replace("{current_time}", current_time).replace("{tools}", tools_section)
    if "{tools}" not in template and tools_section:
        base = f"{base}\n\n{tools_section}"
    if memory:
        base = f"{base}\n\nMemory:\n{memory}"
    return base
