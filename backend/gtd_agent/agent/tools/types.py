"""Tool result and execution context shared by every tool."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gtd_agent.schemas.context import ConversationContext, TrackEntities
from gtd_agent.schemas.undo import UndoAction
from gtd_agent.services.task_store import TaskStore


class ToolResult(BaseModel):
    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    undo_action: UndoAction | None = None
    track_entities: TrackEntities | None = None
    # Action timed out: the mutation may or may not have happened.
    uncertain: bool = False
    # Failed inside the agent (bad arguments, tool crash); the detail is for the model and logs only.
    internal: bool = False

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None, **kwargs: Any) -> "ToolResult":
        return cls(success=True, data=data, **kwargs)

    @classmethod
    def fail(cls, error: str, **kwargs: Any) -> "ToolResult":
        return cls(success=False, error=error, **kwargs)

    def for_model(self) -> dict[str, Any]:
        """Shape fed back to the model as a tool message."""
        if self.success:
            return {"success": True, "data": self.data or {}}
        out: dict[str, Any] = {"success": False, "error": self.error}
        if self.uncertain:
            out["note"] = "The operation timed out and may or may not have completed. Do not retry it."
        return out


@dataclass
class ToolContext:
    user_id: str
    db: AsyncSession
    context: ConversationContext
    now: datetime
    task_store: TaskStore
    undo_stack_cap: int = 5
    recent_cap: int = 5
    max_batch_items: int = 10
    # Separate sessions for lookups that run concurrently; None runs them one by one.
    session_factory: async_sessionmaker[AsyncSession] | None = None
    # An action changed rows this turn; they are not committed until the turn ends.
    has_pending_writes: bool = False
