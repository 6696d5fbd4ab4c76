"""Boundary to the external task store (Notion/Todoist-style). Restores never go through it."""

import logging
from abc import ABC, abstractmethod

from gtd_agent.models import Task

logger = logging.getLogger(__name__)


class TaskStore(ABC):
    @abstractmethod
    async def push(self, task: Task) -> str | None:
        """Create the task remotely. Returns the external id, if any."""
        raise NotImplementedError

    @abstractmethod
    async def complete(self, task: Task) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, task: Task) -> None:
        raise NotImplementedError


class NullTaskStore(TaskStore):
    """No external store connected: the local database is the source of truth."""

    async def push(self, task: Task) -> str | None:
        logger.debug("task_store: no external store, skip push", extra={"task_id": task.id})
        return None

    async def complete(self, task: Task) -> None:
        return None

    async def delete(self, task: Task) -> None:
        return None
