"""Classifier output: a discriminated union validated once after the model call."""

from datetime import date
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from gtd_agent.schemas.enums import (
    DayOfWeek,
    Frequency,
    IntentType,
    LookupKind,
    TaskContext,
    TaskPriority,
    TaskType,
)


class TaskDraft(BaseModel):
    title: str
    type: TaskType | None = None
    context: TaskContext | None = None
    priority: TaskPriority | None = None
    due_date: date | None = None
    person_name: str | None = None  # raw, resolved downstream
    notes: str | None = None
    missing_fields: list[str] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields


class IntentEntities(BaseModel):
    task_text: str | None = None
    person_name: str | None = None
    new_value: str | None = None
    context: TaskContext | None = None
    priority: TaskPriority | None = None
    day_of_week: DayOfWeek | None = None
    frequency: Frequency | None = None
    time: str | None = None
    timezone: str | None = None
    hours: int | None = None
    task_type: TaskType | None = None
    due_date: date | None = None
    note: str | None = None
    alias: str | None = None


class Intent(BaseModel):
    type: IntentType
    entities: IntentEntities = Field(default_factory=IntentEntities)


class RequiredLookup(BaseModel):
    type: LookupKind
    query: str | None = None
    filter: dict[str, str] = Field(default_factory=dict)


class _ClassificationBase(BaseModel):
    confidence: float = Field(ge=0.0, le=1.0)
    needs_data_lookup: bool = False
    reasoning: str | None = None


class TaskClassification(_ClassificationBase):
    type: Literal["task"] = "task"
    task_capture: TaskDraft


class MultiItemClassification(_ClassificationBase):
    type: Literal["multi_item"] = "multi_item"
    items: list[TaskDraft]
    dropped_items: int = 0


class IntentClassification(_ClassificationBase):
    type: Literal["intent"] = "intent"
    intent: Intent
    required_lookups: list[RequiredLookup] = Field(default_factory=list)


class ClarificationClassification(_ClassificationBase):
    type: Literal["needs_clarification"] = "needs_clarification"
    clarification_question: str
    task_capture: TaskDraft | None = None


class UnknownClassification(_ClassificationBase):
    type: Literal["unknown"] = "unknown"


ClassificationResult = Annotated[
    Union[
        TaskClassification,
        MultiItemClassification,
        IntentClassification,
        ClarificationClassification,
        UnknownClassification,
    ],
    Field(discriminator="type"),
]

CLASSIFICATION_TYPES: frozenset[str] = frozenset({"task", "multi_item", "intent", "needs_clarification", "unknown"})
