"""lookup_messages: recent conversation history for "what did I just say" style questions."""

from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gtd_agent.agent.tools.base_tool import BaseTool
from gtd_agent.agent.tools.tool_def import ToolDefinition, ToolKind
from gtd_agent.agent.tools.types import ToolContext, ToolResult
from gtd_agent.models import Message


class LookupMessagesParams(BaseModel):
    limit: int = Field(default=10, ge=1, le=30)
    search: str | None = Field(default=None, description="Only messages containing this text")


class LookupMessagesTool(BaseTool):
    async def call(self, ctx: ToolContext, *, limit: int = 10, search: str | None = None, **kwargs: Any) -> ToolResult:
        stmt = select(Message).where(Message.user_id == ctx.user_id)
        if search and search.strip():
            stmt = stmt.where(Message.content.ilike(f"%{search.strip()}%"))
        result = await ctx.db.execute(stmt.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit))
        messages = list(result.scalars().all())
        return ToolResult.ok(
            {
                "messages": [
                    {"direction": m.direction, "content": m.content, "at": m.created_at.isoformat()}
                    for m in reversed(messages)
                ],
                "count": len(messages),
            }
        )


async def recent_messages(db: AsyncSession, user_id: str, limit: int = 3) -> list[Message]:
    result = await db.execute(
        select(Message)
        .where(Message.user_id == user_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
    )
    return list(reversed(result.scalars().all()))


def message_tool_defs() -> list[ToolDefinition]:
    return [
        ToolDefinition(
            tool_id="lookup_messages",
            description="Recent messages between the user and the assistant, oldest first.",
            parameters_model=LookupMessagesParams,
            instance=LookupMessagesTool(),
            kind=ToolKind.LOOKUP,
        ),
    ]
