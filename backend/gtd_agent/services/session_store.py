"""Redis-backed session store. The session sub-object of the conversation context expires with the key."""

import json
import logging

import redis.asyncio as redis
from pydantic import ValidationError

from gtd_agent.config import settings
from gtd_agent.schemas.context import Session

logger = logging.getLogger(__name__)


class RedisSessionStore:
    def __init__(self, client: redis.Redis | None = None, ttl_seconds: int | None = None) -> None:
        self._client = client
        self.ttl_seconds = ttl_seconds or settings.session_ttl_seconds

    async def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(settings.redis_url, decode_responses=True)
        return self._client

    def _key(self, user_id: str) -> str:
        return f"session:{user_id}"

    async def get(self, user_id: str) -> Session | None:
        client = await self._get_client()
        key = self._key(user_id)
        value = await client.get(key)
        if value is None:
            return None
        try:
            return Session.model_validate(json.loads(value))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Failed to decode session, treating as empty", extra={"key": key, "error": str(e)})
            return None

    async def set(self, user_id: str, session: Session, ttl: int | None = None) -> None:
        client = await self._get_client()
        key = self._key(user_id)
        await client.setex(key, ttl or self.ttl_seconds, session.model_dump_json())
        logger.debug("Stored session", extra={"key": key, "undo_depth": len(session.undo_stack)})

    async def delete(self, user_id: str) -> None:
        client = await self._get_client()
        key = self._key(user_id)
        await client.delete(key)
        logger.debug("Deleted session", extra={"key": key})

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
