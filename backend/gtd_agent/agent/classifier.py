"""Message classifier: one forced tool call, then normalization. Never raises on model trouble."""

import asyncio
import logging
from datetime import datetime

from gtd_agent.agent.normalization import normalize_classification, unknown
from gtd_agent.agent.prompts import CLASSIFY_SCHEMA, CLASSIFY_SCHEMA_NAME, build_classifier_messages
from gtd_agent.models import Message
from gtd_agent.schemas.classification import ClassificationResult
from gtd_agent.schemas.context import ConversationContext
from gtd_agent.services.llm import LLMClient
from gtd_agent.services.timezones import local_now

logger = logging.getLogger(__name__)


class MessageClassifier:
    """Classifies one inbound message into task / multi_item / intent / needs_clarification / unknown."""

    def __init__(
        self,
        llm: LLMClient,
        *,
        max_items: int,
        hint_threshold: float,
        hint_limit: int,
        timeout_seconds: float,
    ):
        self._llm = llm
        self._max_items = max_items
        self._hint_threshold = hint_threshold
        self._hint_limit = hint_limit
        self._timeout = timeout_seconds

    async def classify(
        self,
        message: str,
        context: ConversationContext,
        now: datetime,
        *,
        timezone: str = "UTC",
        recent: list[Message] | None = None,
    ) -> ClassificationResult:
        if not message or not message.strip():
            return unknown("empty message")

        messages = build_classifier_messages(
            message,
            context,
            local_now(now, timezone),
            recent,
            hint_threshold=self._hint_threshold,
            hint_limit=self._hint_limit,
        )
        logger.info(
            "classifier: calling LLM",
            extra={"user_id": context.user_id, "message_length": len(message), "preview": message[:100]},
        )
        try:
            raw = await asyncio.wait_for(
                self._llm.generate_structured(
                    messages,
                    CLASSIFY_SCHEMA_NAME,
                    CLASSIFY_SCHEMA,
                    description="Classify the user's message.",
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("classifier: timed out", extra={"user_id": context.user_id, "timeout": self._timeout})
            return unknown("classifier timed out")
        except Exception as e:
            logger.warning(
                "classifier: model call failed",
                extra={"user_id": context.user_id, "error": f"{type(e).__name__}: {e}"},
            )
            return unknown(f"model error: {type(e).__name__}")

        result = normalize_classification(raw, message, max_items=self._max_items)
        logger.info(
            "classifier: result",
            extra={
                "user_id": context.user_id,
                "type": result.type,
                "confidence": result.confidence,
                "needs_data_lookup": result.needs_data_lookup,
            },
        )
        return result
