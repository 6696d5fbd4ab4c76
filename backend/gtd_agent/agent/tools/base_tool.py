"""Base class for agent tools."""

from abc import ABC, abstractmethod
from typing import Any

from gtd_agent.agent.tools.types import ToolContext, ToolResult


class BaseTool(ABC):
    """Base class for agent tools. Returns a ToolResult and never raises for expected failures."""

    @abstractmethod
    async def call(self, ctx: ToolContext, **kwargs: Any) -> ToolResult:
        """Execute tool with validated params."""
        raise NotImplementedError
