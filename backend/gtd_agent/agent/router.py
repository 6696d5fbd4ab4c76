"""Intent router: intent type -> handler, checked for exhaustiveness at startup."""

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

from gtd_agent.agent.executor import ExecutedCall
from gtd_agent.agent.tools.types import ToolContext
from gtd_agent.schemas.classification import ClassificationResult, IntentClassification
from gtd_agent.schemas.enums import IntentType

logger = logging.getLogger(__name__)


@dataclass
class Turn:
    """Per-turn state handed to handlers and the tool round."""

    user_id: str
    text: str
    now: datetime
    timezone: str
    tool_ctx: ToolContext
    classification: ClassificationResult
    executed: list[ExecutedCall] = field(default_factory=list)

    @property
    def uncertain_tools(self) -> list[str]:
        return [e.call.name for e in self.executed if e.result.uncertain]


Handler = Callable[[Turn, IntentClassification], Awaitable[str]]


class RouterConfigError(RuntimeError):
    """Some intent type has neither a handler nor a default."""


class IntentRouter:
    def __init__(self, handlers: Mapping[IntentType, Handler], default: Handler | None = None):
        self._handlers = dict(handlers)
        self._default = default

    def validate(self) -> None:
        if self._default is not None:
            return
        missing = [t.value for t in IntentType if t not in self._handlers]
        if missing:
            raise RouterConfigError(f"No handler for intents: {', '.join(missing)}")

    def has_handler(self, intent: IntentType) -> bool:
        return intent in self._handlers

    async def dispatch(self, turn: Turn, classification: IntentClassification) -> str:
        intent = classification.intent.type
        handler = self._handlers.get(intent)
        if handler is None:
            if self._default is None:
                raise RouterConfigError(f"No handler for intent {intent.value}")
            handler = self._default
        logger.info(
            "router: dispatch",
            extra={"user_id": turn.user_id, "intent": intent.value, "direct": intent in self._handlers},
        )
        return await handler(turn, classification)
