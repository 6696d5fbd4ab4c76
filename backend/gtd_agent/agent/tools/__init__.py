"""Agent tools and the registry factory."""

from typing import TYPE_CHECKING

from gtd_agent.agent.tools.base_tool import BaseTool
from gtd_agent.agent.tools.batch_tools import batch_tool_defs
from gtd_agent.agent.tools.message_tools import message_tool_defs
from gtd_agent.agent.tools.people_tools import people_tool_defs
from gtd_agent.agent.tools.settings_tools import settings_tool_defs
from gtd_agent.agent.tools.task_tools import task_tool_defs
from gtd_agent.agent.tools.tool_def import ToolDefinition, ToolKind, ToolRegistry, ToolRegistryError
from gtd_agent.agent.tools.types import ToolContext, ToolResult
from gtd_agent.config import settings

if TYPE_CHECKING:
    from gtd_agent.agent.undo import UndoManager


def build_tool_registry(
    undo_manager: "UndoManager",
    *,
    lookup_timeout: float | None = None,
    action_timeout: float | None = None,
) -> ToolRegistry:
    """Construct the full catalog. Called once at startup (and per test)."""
    return ToolRegistry(
        [
            *task_tool_defs(undo_manager),
            *batch_tool_defs(),
            *people_tool_defs(),
            *settings_tool_defs(),
            *message_tool_defs(),
        ],
        lookup_timeout=lookup_timeout or settings.lookup_timeout_seconds,
        action_timeout=action_timeout or settings.action_timeout_seconds,
    )


__all__ = [
    "BaseTool",
    "ToolContext",
    "ToolDefinition",
    "ToolKind",
    "ToolRegistry",
    "ToolRegistryError",
    "ToolResult",
    "build_tool_registry",
]
