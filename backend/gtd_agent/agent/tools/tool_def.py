"""Tool definitions with Pydantic params and OpenAI schema, and the registry that holds them."""

import logging
from enum import Enum
from typing import Iterable

from pydantic import BaseModel

from gtd_agent.agent.tools.base_tool import BaseTool

logger = logging.getLogger(__name__)


class ToolKind(str, Enum):
    LOOKUP = "lookup"  # read-only, safe to run concurrently and retry
    ACTION = "action"  # mutating, ordered, never retried


class ToolRegistryError(ValueError):
    """Registry misconfiguration detected at construction time."""


class ToolDefinition:
    """Tool metadata: OpenAI schema, validation, execution."""

    def __init__(
        self,
        tool_id: str,
        description: str,
        parameters_model: type[BaseModel],
        instance: BaseTool,
        kind: ToolKind,
        timeout_seconds: float | None = None,
    ):
        self.tool_id = tool_id
        self.description = description
        self.parameters_model = parameters_model
        self.instance = instance
        self.kind = kind
        self.timeout_seconds = timeout_seconds

    @property
    def is_lookup(self) -> bool:
        return self.kind == ToolKind.LOOKUP

    def to_openai_function(self) -> dict:
        schema = self.parameters_model.model_json_schema()
        return {
            "type": "function",
            "function": {
                "name": self.tool_id,
                "description": self.description,
                "parameters": schema,
            },
        }

    def validate_args(self, args: dict) -> BaseModel:
        return self.parameters_model.model_validate(args)


class ToolRegistry:
    """Explicit catalog of tools, built once at startup and passed to whoever needs it."""

    def __init__(
        self,
        tools: Iterable[ToolDefinition],
        *,
        lookup_timeout: float,
        action_timeout: float,
    ):
        self._tools: dict[str, ToolDefinition] = {}
        self._timeouts: dict[str, float] = {}
        for tool in tools:
            if tool.tool_id in self._tools:
                raise ToolRegistryError(f"Duplicate tool name: {tool.tool_id}")
            timeout = tool.timeout_seconds
            if timeout is None:
                timeout = lookup_timeout if tool.is_lookup else action_timeout
            if timeout <= 0:
                raise ToolRegistryError(f"Tool '{tool.tool_id}' has invalid timeout_seconds={timeout}")
            self._tools[tool.tool_id] = tool
            self._timeouts[tool.tool_id] = timeout
        logger.info("Tool registry built", extra={"tools": len(self._tools)})

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def timeout_for(self, name: str) -> float:
        return self._timeouts[name]

    def lookups(self) -> list[ToolDefinition]:
        return [t for t in self._tools.values() if t.kind == ToolKind.LOOKUP]

    def actions(self) -> list[ToolDefinition]:
        return [t for t in self._tools.values() if t.kind == ToolKind.ACTION]

    def openai_tools(self, names: Iterable[str] | None = None) -> list[dict]:
        if names is None:
            return [t.to_openai_function() for t in self._tools.values()]
        return [self._tools[n].to_openai_function() for n in names if n in self._tools]

    def catalog_section(self) -> str:
        """Short catalog for the system prompt (full schemas go through the API)."""
        lines = []
        for kind, title in ((ToolKind.LOOKUP, "Lookup tools (read-only)"), (ToolKind.ACTION, "Action tools (change data)")):
            lines.append(f"{title}:")
            lines.extend(
                f"- {t.tool_id}: {t.description}" for t in self._tools.values() if t.kind == kind
            )
        return "\n".join(lines)
