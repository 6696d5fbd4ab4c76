"""Row <-> dict/ref/snapshot helpers shared by tools and the undo manager."""

from datetime import date, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from gtd_agent.config import settings
from gtd_agent.models import Person, Task, User
from gtd_agent.schemas.context import PersonRef, TaskRef
from gtd_agent.schemas.undo import PersonSnapshot, TaskSnapshot


async def get_or_create_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        user = User(
            id=user_id,
            timezone=settings.default_timezone,
            digest_time="08:00",
            meeting_reminder_hours=2,
            weekly_review_day="sunday",
            weekly_review_time="17:00",
            status="active",
            total_tasks_captured=0,
            total_tasks_completed=0,
        )
        db.add(user)
        await db.flush()
    return user


async def get_task(db: AsyncSession, user_id: str, task_id: str) -> Task | None:
    result = await db.execute(
        select(Task).options(selectinload(Task.person)).where(Task.id == task_id, Task.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_person(db: AsyncSession, user_id: str, person_id: str) -> Person | None:
    result = await db.execute(select(Person).where(Person.id == person_id, Person.user_id == user_id))
    return result.scalar_one_or_none()


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def task_to_dict(task: Task, person_name: str | None = None) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "type": task.type,
        "status": task.status,
        "context": task.context,
        "priority": task.priority,
        "due_date": _iso(task.due_date),
        "person": person_name,
        "notes": task.notes,
    }


def task_ref(task: Task, person_name: str | None = None) -> TaskRef:
    return TaskRef(id=task.id, title=task.title, type=task.type, status=task.status, person_name=person_name)


def person_to_dict(person: Person) -> dict[str, Any]:
    return {
        "id": person.id,
        "name": person.name,
        "aliases": list(person.aliases or []),
        "frequency": person.frequency,
        "day_of_week": person.day_of_week,
    }


def person_ref(person: Person) -> PersonRef:
    return PersonRef(id=person.id, name=person.name, aliases=list(person.aliases or []))


def snapshot_task(task: Task) -> TaskSnapshot:
    return TaskSnapshot(
        id=task.id,
        title=task.title,
        type=task.type,
        status=task.status,
        context=task.context,
        priority=task.priority,
        due_date=_iso(task.due_date),
        person_id=task.person_id,
        notes=task.notes,
        external_id=task.external_id,
        created_at=_iso(task.created_at),
        completed_at=_iso(task.completed_at),
    )


def task_from_snapshot(user_id: str, snap: TaskSnapshot) -> Task:
    task = Task(
        id=snap.id,
        user_id=user_id,
        title=snap.title,
        type=snap.type,
        status=snap.status,
        context=snap.context,
        priority=snap.priority,
        due_date=date.fromisoformat(snap.due_date) if snap.due_date else None,
        person_id=snap.person_id,
        notes=snap.notes,
        external_id=snap.external_id,
        completed_at=datetime.fromisoformat(snap.completed_at) if snap.completed_at else None,
    )
    if snap.created_at:
        task.created_at = datetime.fromisoformat(snap.created_at)
    return task


def snapshot_person(person: Person) -> PersonSnapshot:
    return PersonSnapshot(
        id=person.id,
        name=person.name,
        aliases=list(person.aliases or []),
        frequency=person.frequency,
        day_of_week=person.day_of_week,
        notes=person.notes,
    )
