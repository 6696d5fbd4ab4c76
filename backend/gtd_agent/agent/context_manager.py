"""Conversation context: load/update per user, entity-tracking merge, undo stack bounds, pattern learning."""

import logging
from datetime import datetime, timedelta

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from gtd_agent.agent.tools.common import get_or_create_user
from gtd_agent.models import UserContext
from gtd_agent.schemas.context import (
    ContextDelta,
    ConversationContext,
    Correction,
    EntityCache,
    Patterns,
    PersonRef,
    Preferences,
    Session,
    TaskRef,
    TrackEntities,
    WordAssociation,
)
from gtd_agent.schemas.undo import UndoAction
from gtd_agent.services.people import list_active_people
from gtd_agent.services.session_store import RedisSessionStore
from gtd_agent.services.timezones import as_utc

logger = logging.getLogger(__name__)

NEW_ASSOCIATION_CONFIDENCE = 0.3
REINFORCE_RATE = 0.2


def _merge_recent(incoming: list[TaskRef] | list[PersonRef], existing: list, cap: int) -> list:
    """Prepend incoming (already most-recent-first), drop duplicates by id, keep the first `cap`."""
    merged = []
    seen: set[str] = set()
    for ref in [*incoming, *existing]:
        if ref.id in seen:
            continue
        seen.add(ref.id)
        merged.append(ref)
    return merged[:cap]


def merge_tracked_entities(session: Session, track: TrackEntities, cap: int) -> Session:
    update: dict = {}
    if track.tasks:
        update["recent_tasks"] = _merge_recent(track.tasks, session.recent_tasks, cap)
    if track.people:
        update["recent_people"] = _merge_recent(track.people, session.recent_people, cap)
    if track.last_created_id:
        update["last_created_task_id"] = track.last_created_id
    return session.model_copy(update=update) if update else session


def push_undo(session: Session, action: UndoAction, cap: int) -> Session:
    stack = [*session.undo_stack, action]
    if len(stack) > cap:
        stack = stack[len(stack) - cap :]
    return session.model_copy(update={"undo_stack": stack})


def pop_undo(session: Session) -> tuple[Session, UndoAction | None]:
    if not session.undo_stack:
        return session, None
    return session.model_copy(update={"undo_stack": session.undo_stack[:-1]}), session.undo_stack[-1]


def learn_correction(patterns: Patterns, correction: Correction, now: datetime) -> Patterns:
    """Reinforce the matching association toward 1.0, or start a new weak one."""
    trigger = correction.trigger.strip().lower()
    associations = [a.model_copy() for a in patterns.word_associations]
    for assoc in associations:
        if assoc.trigger == trigger and assoc.field == correction.field and assoc.value == correction.value:
            assoc.occurrences += 1
            assoc.confidence = min(1.0, assoc.confidence + (1.0 - assoc.confidence) * REINFORCE_RATE)
            assoc.last_used = now
            break
    else:
        associations.append(
            WordAssociation(
                trigger=trigger,
                field=correction.field,
                value=correction.value,
                confidence=NEW_ASSOCIATION_CONFIDENCE,
                occurrences=1,
                last_used=now,
            )
        )
    return Patterns(word_associations=associations, total_corrections=patterns.total_corrections + 1)


def apply_delta(
    context: ConversationContext,
    delta: ContextDelta,
    *,
    now: datetime,
    recent_cap: int,
    undo_cap: int,
) -> ConversationContext:
    """Merge a delta into a snapshot, returning a new context. The input is left untouched."""
    session = context.session
    if delta.track_entities is not None:
        session = merge_tracked_entities(session, delta.track_entities, recent_cap)
    if delta.undo_pop:
        session, _ = pop_undo(session)
    for action in delta.undo_push:
        session = push_undo(session, action, undo_cap)
    if delta.clear_flow:
        session = session.model_copy(update={"active_flow": None})
    if delta.active_flow is not None:
        session = session.model_copy(update={"active_flow": delta.active_flow})

    patterns = context.patterns
    if delta.correction is not None:
        patterns = learn_correction(patterns, delta.correction, now)

    return context.model_copy(
        update={
            "session": session,
            "patterns": patterns,
            "entities": delta.entities if delta.entities is not None else context.entities,
        }
    )


def _parse(model: type[BaseModel], raw: dict | None, user_id: str, field: str) -> BaseModel:
    try:
        return model.model_validate(raw or {})
    except ValidationError as e:
        logger.warning("context: corrupt field reset", extra={"user_id": user_id, "field": field, "error": str(e)})
        return model()


class ConversationContextManager:
    """Durable parts in the database, the session in the session store with a TTL."""

    def __init__(
        self,
        store: RedisSessionStore,
        *,
        session_ttl_seconds: int,
        recent_cap: int,
        undo_cap: int,
    ):
        self._store = store
        self.session_ttl = timedelta(seconds=session_ttl_seconds)
        self.recent_cap = recent_cap
        self.undo_cap = undo_cap

    def new_session(self, now: datetime) -> Session:
        return Session(expires_at=as_utc(now) + self.session_ttl)

    async def load(self, db: AsyncSession, user_id: str, now: datetime) -> ConversationContext:
        now = as_utc(now)
        row = await db.get(UserContext, user_id)
        if row is None:
            await get_or_create_user(db, user_id)
            row = UserContext(user_id=user_id, preferences={}, patterns={}, entities={})
            db.add(row)
            await db.flush()
            logger.info("context: created", extra={"user_id": user_id})

        session = await self._store.get(user_id)
        if session is None or as_utc(session.expires_at) <= now:
            if session is not None:
                logger.info("context: session expired", extra={"user_id": user_id})
            session = self.new_session(now)

        return ConversationContext(
            user_id=user_id,
            preferences=_parse(Preferences, row.preferences, user_id, "preferences"),
            patterns=_parse(Patterns, row.patterns, user_id, "patterns"),
            entities=_parse(EntityCache, row.entities, user_id, "entities"),
            session=session,
        )

    async def save(self, db: AsyncSession, context: ConversationContext, now: datetime) -> ConversationContext:
        now = as_utc(now)
        context = context.model_copy(
            update={"session": context.session.model_copy(update={"expires_at": now + self.session_ttl})}
        )
        row = await db.get(UserContext, context.user_id)
        if row is None:
            row = UserContext(user_id=context.user_id)
            db.add(row)
        row.preferences = context.preferences.model_dump(mode="json")
        row.patterns = context.patterns.model_dump(mode="json")
        row.entities = context.entities.model_dump(mode="json")
        await db.flush()
        await self._store.set(context.user_id, context.session, int(self.session_ttl.total_seconds()))
        return context

    async def update(self, db: AsyncSession, user_id: str, delta: ContextDelta, now: datetime) -> ConversationContext:
        """Load, merge, write back. Callers hold the user's lock."""
        context = await self.load(db, user_id, now)
        merged = apply_delta(context, delta, now=as_utc(now), recent_cap=self.recent_cap, undo_cap=self.undo_cap)
        return await self.save(db, merged, now)

    async def refresh_entities(self, db: AsyncSession, context: ConversationContext, now: datetime) -> ConversationContext:
        """Reload the known-people cache when it is older than the session TTL."""
        now = as_utc(now)
        refreshed = context.entities.refreshed_at
        if refreshed is not None and as_utc(refreshed) + self.session_ttl > now:
            return context
        people = await list_active_people(db, context.user_id)
        entities = context.entities.model_copy(
            update={
                "people": [PersonRef(id=p.id, name=p.name, aliases=list(p.aliases or [])) for p in people],
                "refreshed_at": now,
            }
        )
        return context.model_copy(update={"entities": entities})
