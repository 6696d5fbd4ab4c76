import difflib
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gtd_agent.models import Person

logger = logging.getLogger(__name__)


async def list_active_people(db: AsyncSession, user_id: str) -> list[Person]:
    result = await db.execute(
        select(Person).where(Person.user_id == user_id, Person.active.is_(True)).order_by(Person.name)
    )
    return list(result.scalars().all())


def match_people(people: list[Person], query: str, cutoff: float = 0.75) -> list[Person]:
    """Exact name/alias matches first, then substring, then close spellings."""
    q = query.strip().lower()
    if not q:
        return []
    exact = [p for p in people if p.name.lower() == q or q in [a.lower() for a in (p.aliases or [])]]
    if exact:
        return exact
    partial = [p for p in people if q in p.name.lower() or any(q in a.lower() for a in (p.aliases or []))]
    if partial:
        return partial

    by_label: dict[str, Person] = {}
    for p in people:
        by_label.setdefault(p.name.lower(), p)
        for alias in p.aliases or []:
            by_label.setdefault(alias.lower(), p)
    close = difflib.get_close_matches(q, list(by_label), n=3, cutoff=cutoff)
    if close:
        logger.info("people: used fuzzy match", extra={"query": q, "matches": close})
    seen: list[Person] = []
    for label in close:
        if by_label[label] not in seen:
            seen.append(by_label[label])
    return seen


class AmbiguousPersonError(ValueError):
    """A name that matches more than one active person."""

    def __init__(self, name: str, matches: list[Person]):
        self.matches = matches
        names = [p.name for p in matches]
        super().__init__(f"Which {name.strip().title()}? {', '.join(names[:-1])} or {names[-1]}")


async def resolve_person(db: AsyncSession, user_id: str, name: str) -> Person | None:
    """Resolve a raw name to a single active person. None when nobody matches."""
    matches = match_people(await list_active_people(db, user_id), name)
    if len(matches) > 1:
        logger.info("people: ambiguous name", extra={"user_id": user_id, "person_name": name, "count": len(matches)})
        raise AmbiguousPersonError(name, matches)
    return matches[0] if matches else None


async def get_or_create_person(db: AsyncSession, user_id: str, name: str) -> tuple[Person, bool]:
    person = await resolve_person(db, user_id, name)
    if person is not None:
        return person, False
    person = Person(user_id=user_id, name=name.strip().title(), aliases=[])
    db.add(person)
    await db.flush()
    logger.info("people: created person", extra={"user_id": user_id, "person_id": person.id})
    return person, True
