"""People tools: lookup_people, create_person, update_person, remove_person (soft delete)."""

import logging
import uuid
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import func, select

from gtd_agent.agent.tools.base_tool import BaseTool
from gtd_agent.agent.tools.common import get_person, person_ref, person_to_dict, snapshot_person
from gtd_agent.agent.tools.tool_def import ToolDefinition, ToolKind
from gtd_agent.agent.tools.types import ToolContext, ToolResult
from gtd_agent.models import Person, Task
from gtd_agent.schemas.context import TrackEntities
from gtd_agent.schemas.enums import DayOfWeek, Frequency, TaskStatus, TaskType
from gtd_agent.schemas.undo import DeleteCreatedPerson, RestorePerson
from gtd_agent.services.people import list_active_people, match_people
from gtd_agent.services.timezones import naive_utc

logger = logging.getLogger(__name__)

PERSON_ID_DESCRIPTION = 'Person id from lookup_people, or "#1" for the person just shown.'


class LookupPeopleParams(BaseModel):
    name: str | None = Field(default=None, description="Name or alias; omit to list everyone")


class LookupPeopleTool(BaseTool):
    async def call(self, ctx: ToolContext, *, name: str | None = None, **kwargs: Any) -> ToolResult:
        people = await list_active_people(ctx.db, ctx.user_id)
        if name and name.strip():
            people = match_people(people, name)

        counts: dict[str, int] = {}
        if people:
            result = await ctx.db.execute(
                select(Task.person_id, func.count(Task.id))
                .where(
                    Task.user_id == ctx.user_id,
                    Task.person_id.in_([p.id for p in people]),
                    Task.status == TaskStatus.PENDING.value,
                    Task.type == TaskType.AGENDA.value,
                )
                .group_by(Task.person_id)
            )
            counts = {pid: n for pid, n in result.all()}

        out = [{**person_to_dict(p), "agenda_items": counts.get(p.id, 0)} for p in people]
        return ToolResult.ok(
            {"people": out, "count": len(out)},
            track_entities=TrackEntities(people=[person_ref(p) for p in people]) if people else None,
        )


class CreatePersonParams(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    aliases: list[str] = Field(default_factory=list)
    frequency: Frequency | None = Field(default=None, description="How often the user meets this person")
    day_of_week: DayOfWeek | None = None


class CreatePersonTool(BaseTool):
    async def call(
        self,
        ctx: ToolContext,
        *,
        name: str,
        aliases: list[str],
        frequency: Frequency | None = None,
        day_of_week: DayOfWeek | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        existing = [p for p in await list_active_people(ctx.db, ctx.user_id) if p.name.lower() == name.strip().lower()]
        if existing:
            return ToolResult.fail(f"{existing[0].name} is already in your people list")

        person = Person(
            id=str(uuid.uuid4()),
            user_id=ctx.user_id,
            name=name.strip(),
            aliases=[a.strip() for a in aliases if a.strip()],
            frequency=frequency.value if frequency else None,
            day_of_week=day_of_week.value if day_of_week else None,
            active=True,
            created_at=naive_utc(ctx.now),
        )
        ctx.db.add(person)
        await ctx.db.flush()
        logger.info("create_person", extra={"user_id": ctx.user_id, "person_id": person.id})
        return ToolResult.ok(
            {"person": person_to_dict(person)},
            undo_action=DeleteCreatedPerson(person_id=person.id, description=f"add {person.name}"),
            track_entities=TrackEntities(people=[person_ref(person)]),
        )


class UpdatePersonParams(BaseModel):
    person_id: str = Field(..., description=PERSON_ID_DESCRIPTION)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    add_aliases: list[str] = Field(default_factory=list)
    remove_aliases: list[str] = Field(default_factory=list)
    frequency: Frequency | None = None
    day_of_week: DayOfWeek | None = None
    notes: str | None = None


class UpdatePersonTool(BaseTool):
    async def call(self, ctx: ToolContext, *, person_id: str, **kwargs: Any) -> ToolResult:
        person = await get_person(ctx.db, ctx.user_id, person_id)
        if person is None or not person.active:
            return ToolResult.fail(f"Person {person_id} not found")

        before = snapshot_person(person)
        if kwargs.get("name"):
            person.name = kwargs["name"].strip()
        aliases = list(person.aliases or [])
        for alias in kwargs.get("add_aliases") or []:
            if alias.strip() and alias.strip().lower() not in [a.lower() for a in aliases]:
                aliases.append(alias.strip())
        drop = {a.lower() for a in kwargs.get("remove_aliases") or []}
        person.aliases = [a for a in aliases if a.lower() not in drop]
        if kwargs.get("frequency") is not None:
            person.frequency = kwargs["frequency"].value
        if kwargs.get("day_of_week") is not None:
            person.day_of_week = kwargs["day_of_week"].value
        if kwargs.get("notes") is not None:
            person.notes = kwargs["notes"]

        if snapshot_person(person) == before:
            return ToolResult.fail("Nothing to update")
        await ctx.db.flush()
        logger.info("update_person", extra={"user_id": ctx.user_id, "person_id": person.id})
        return ToolResult.ok(
            {"person": person_to_dict(person)},
            undo_action=RestorePerson(snapshot=before, description=f"edit {before.name}"),
            track_entities=TrackEntities(people=[person_ref(person)]),
        )


class PersonIdParams(BaseModel):
    person_id: str = Field(..., description=PERSON_ID_DESCRIPTION)


class RemovePersonTool(BaseTool):
    """Soft delete: the person is hidden, their tasks stay."""

    async def call(self, ctx: ToolContext, *, person_id: str, **kwargs: Any) -> ToolResult:
        person = await get_person(ctx.db, ctx.user_id, person_id)
        if person is None or not person.active:
            return ToolResult.fail(f"Person {person_id} not found")
        snapshot = snapshot_person(person)
        person.active = False
        await ctx.db.flush()
        logger.info("remove_person", extra={"user_id": ctx.user_id, "person_id": person.id})
        return ToolResult.ok(
            {"removed": {"id": person.id, "name": person.name}},
            undo_action=RestorePerson(snapshot=snapshot, description=f"remove {person.name}"),
        )


def people_tool_defs() -> list[ToolDefinition]:
    return [
        ToolDefinition(
            tool_id="lookup_people",
            description="Find people by name or alias (typo tolerant), with their open agenda item counts.",
            parameters_model=LookupPeopleParams,
            instance=LookupPeopleTool(),
            kind=ToolKind.LOOKUP,
        ),
        ToolDefinition(
            tool_id="create_person",
            description="Add a person the user meets or waits on, with optional aliases and meeting schedule.",
            parameters_model=CreatePersonParams,
            instance=CreatePersonTool(),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="update_person",
            description="Rename a person, add or remove aliases, or change their meeting schedule.",
            parameters_model=UpdatePersonParams,
            instance=UpdatePersonTool(),
            kind=ToolKind.ACTION,
        ),
        ToolDefinition(
            tool_id="remove_person",
            description="Remove a person from the people list (can be undone).",
            parameters_model=PersonIdParams,
            instance=RemovePersonTool(),
            kind=ToolKind.ACTION,
        ),
    ]
