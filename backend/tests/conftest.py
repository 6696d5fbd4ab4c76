"""
Shared fixtures: a file-backed SQLite database per test (so concurrent
lookup sessions see the same rows), fakeredis for the session store, and
the tool registry / executor / context manager wired the way main.py does.
"""
import json
import os

# Point the module-level engine at SQLite before gtd_agent.database is imported.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import fakeredis.aioredis
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import gtd_agent.models  # noqa: F401
from gtd_agent.agent.context_manager import ConversationContextManager
from gtd_agent.agent.executor import ToolCall, ToolExecutor
from gtd_agent.agent.tools import build_tool_registry
from gtd_agent.agent.tools.types import ToolContext
from gtd_agent.agent.undo import UndoManager
from gtd_agent.database import Base
from gtd_agent.services.llm import LLMClient
from gtd_agent.services.session_store import RedisSessionStore
from gtd_agent.services.task_store import NullTaskStore

USER_ID = "user-1"
# Wednesday afternoon in New York.
NOW = datetime(2026, 10, 14, 18, 0, tzinfo=timezone.utc)


# ── database ─────────────────────────────────────────────────────────────────

@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ── session store / context ──────────────────────────────────────────────────

@pytest.fixture
async def redis_client():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()


@pytest.fixture
def store(redis_client) -> RedisSessionStore:
    return RedisSessionStore(client=redis_client, ttl_seconds=3600)


@pytest.fixture
def context_manager(store) -> ConversationContextManager:
    return ConversationContextManager(store, session_ttl_seconds=3600, recent_cap=5, undo_cap=5)


# ── tools ────────────────────────────────────────────────────────────────────

@pytest.fixture
def undo_manager() -> UndoManager:
    return UndoManager(cap=5)


@pytest.fixture
def registry(undo_manager):
    return build_tool_registry(undo_manager, lookup_timeout=2.0, action_timeout=2.0)


@pytest.fixture
def executor(registry, undo_manager) -> ToolExecutor:
    return ToolExecutor(registry, undo_manager, recent_cap=5)


@pytest.fixture
async def tool_ctx(db, context_manager, session_factory) -> ToolContext:
    context = await context_manager.load(db, USER_ID, NOW)
    await db.commit()
    return ToolContext(
        user_id=USER_ID,
        db=db,
        context=context,
        now=NOW,
        task_store=NullTaskStore(),
        session_factory=session_factory,
    )


def call(name: str, args: dict[str, Any] | None = None, call_id: str | None = None) -> ToolCall:
    return ToolCall(name=name, arguments=args or {}, call_id=call_id or f"t_{name}")


async def create(executor: ToolExecutor, ctx: ToolContext, title: str, type: str = "action", **fields: Any):
    result = await executor.execute(call("create_task", {"title": title, "type": type, **fields}), ctx)
    assert result.success, result.error
    return result.data["task"]


# ── model doubles ────────────────────────────────────────────────────────────

def classifier_llm(*payloads: dict[str, Any]) -> MagicMock:
    """LLM double whose forced classify_message call returns each payload in turn."""
    llm = MagicMock(spec=LLMClient)
    llm.generate_structured = AsyncMock(side_effect=list(payloads))
    return llm


def agent_llm(*responses: dict[str, Any] | Exception) -> MagicMock:
    llm = MagicMock(spec=LLMClient)
    llm.complete = AsyncMock(side_effect=list(responses))
    return llm


def tool_calls_message(*calls: tuple[str, dict[str, Any]]) -> dict[str, Any]:
    return {
        "message": {
            "role": "assistant",
            "content": "",
            "tool_calls": [
                {"id": f"call_{i}", "type": "function", "function": {"name": n, "arguments": json.dumps(a)}}
                for i, (n, a) in enumerate(calls)
            ],
        }
    }


def text_message(text: str) -> dict[str, Any]:
    return {"message": {"role": "assistant", "content": text}}
