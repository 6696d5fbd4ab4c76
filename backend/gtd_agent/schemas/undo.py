"""Undo actions: one variant per reversible mutation, carrying everything needed to invert it."""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class TaskSnapshot(BaseModel):
    id: str
    title: str
    type: str
    status: str = "pending"
    context: str | None = None
    priority: str | None = None
    due_date: str | None = None
    person_id: str | None = None
    notes: str | None = None
    external_id: str | None = None
    created_at: str | None = None
    completed_at: str | None = None


class PersonSnapshot(BaseModel):
    id: str
    name: str
    aliases: list[str] = Field(default_factory=list)
    frequency: str | None = None
    day_of_week: str | None = None
    notes: str | None = None


class DeleteCreatedTask(BaseModel):
    type: Literal["delete_created_task"] = "delete_created_task"
    task_id: str
    description: str = ""


class DeleteCreatedTasks(BaseModel):
    type: Literal["delete_created_tasks"] = "delete_created_tasks"
    task_ids: list[str]
    description: str = ""


class RestoreDeletedTask(BaseModel):
    type: Literal["restore_deleted_task"] = "restore_deleted_task"
    snapshot: TaskSnapshot
    description: str = ""


class RestoreDeletedTasks(BaseModel):
    type: Literal["restore_deleted_tasks"] = "restore_deleted_tasks"
    snapshots: list[TaskSnapshot]
    description: str = ""


class RevertTaskUpdate(BaseModel):
    type: Literal["revert_task_update"] = "revert_task_update"
    task_id: str
    previous_fields: dict[str, Any]
    description: str = ""


class UncompleteTask(BaseModel):
    type: Literal["uncomplete_task"] = "uncomplete_task"
    task_id: str
    previous_status: str = "pending"
    description: str = ""


class UncompleteTasks(BaseModel):
    type: Literal["uncomplete_tasks"] = "uncomplete_tasks"
    task_ids: list[str]
    description: str = ""


class RestorePerson(BaseModel):
    type: Literal["restore_person"] = "restore_person"
    snapshot: PersonSnapshot
    description: str = ""


class DeleteCreatedPerson(BaseModel):
    type: Literal["delete_created_person"] = "delete_created_person"
    person_id: str
    description: str = ""


UndoAction = Annotated[
    Union[
        DeleteCreatedTask,
        DeleteCreatedTasks,
        RestoreDeletedTask,
        RestoreDeletedTasks,
        RevertTaskUpdate,
        UncompleteTask,
        UncompleteTasks,
        RestorePerson,
        DeleteCreatedPerson,
    ],
    Field(discriminator="type"),
]
