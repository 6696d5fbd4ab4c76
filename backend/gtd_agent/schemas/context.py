"""Per-user conversation context: durable preferences/patterns/entities plus an expiring session."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from gtd_agent.schemas.enums import TaskContext, TaskPriority
from gtd_agent.schemas.undo import UndoAction


class TaskRef(BaseModel):
    id: str
    title: str
    type: str | None = None
    status: str | None = None
    person_name: str | None = None


class PersonRef(BaseModel):
    id: str
    name: str
    aliases: list[str] = Field(default_factory=list)


class ActiveFlow(BaseModel):
    kind: Literal["clarification"]
    state: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime | None = None


class Session(BaseModel):
    recent_tasks: list[TaskRef] = Field(default_factory=list)
    recent_people: list[PersonRef] = Field(default_factory=list)
    last_created_task_id: str | None = None
    active_flow: ActiveFlow | None = None
    undo_stack: list[UndoAction] = Field(default_factory=list)  # oldest first, top is last
    expires_at: datetime


class Preferences(BaseModel):
    default_context: TaskContext | None = None
    priority_keywords: dict[str, TaskPriority] = Field(default_factory=dict)
    date_aliases: dict[str, str] = Field(default_factory=dict)
    label_mappings: dict[str, str] = Field(default_factory=dict)
    project_mappings: dict[str, str] = Field(default_factory=dict)


class WordAssociation(BaseModel):
    trigger: str
    field: str
    value: str
    confidence: float = Field(ge=0.0, le=1.0)
    occurrences: int = 1
    last_used: datetime | None = None


class Patterns(BaseModel):
    word_associations: list[WordAssociation] = Field(default_factory=list)
    total_corrections: int = 0


class EntityCache(BaseModel):
    people: list[PersonRef] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    refreshed_at: datetime | None = None


class ConversationContext(BaseModel):
    user_id: str
    preferences: Preferences = Field(default_factory=Preferences)
    patterns: Patterns = Field(default_factory=Patterns)
    session: Session
    entities: EntityCache = Field(default_factory=EntityCache)


class TrackEntities(BaseModel):
    tasks: list[TaskRef] = Field(default_factory=list)
    people: list[PersonRef] = Field(default_factory=list)
    last_created_id: str | None = None


class Correction(BaseModel):
    """User overrode an inferred field; `trigger` is the keyword that led to the inference."""

    trigger: str
    field: str
    value: str


class ContextDelta(BaseModel):
    track_entities: TrackEntities | None = None
    undo_push: list[UndoAction] = Field(default_factory=list)
    undo_pop: bool = False
    active_flow: ActiveFlow | None = None
    clear_flow: bool = False
    correction: Correction | None = None
    entities: EntityCache | None = None
