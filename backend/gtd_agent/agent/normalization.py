"""Turn raw classifier output into a validated ClassificationResult. Pure and synchronous."""

import logging
import math
import re
from datetime import date
from enum import Enum
from typing import Any, TypeVar

from pydantic import ValidationError

from gtd_agent.schemas.classification import (
    CLASSIFICATION_TYPES,
    ClarificationClassification,
    ClassificationResult,
    Intent,
    IntentClassification,
    IntentEntities,
    MultiItemClassification,
    RequiredLookup,
    TaskClassification,
    TaskDraft,
    UnknownClassification,
)
from gtd_agent.schemas.enums import (
    PERSON_REQUIRED_TYPES,
    STATIC_INTENTS,
    DayOfWeek,
    Frequency,
    IntentType,
    LookupKind,
    TaskContext,
    TaskPriority,
    TaskType,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

DEFAULT_CONFIDENCE = 0.5
DEFAULT_CLARIFICATION = "Could you tell me a bit more about what you need?"

_TITLE_PREFIXES = (
    "i need to ",
    "i have to ",
    "i should ",
    "i must ",
    "i want to ",
    "need to ",
    "have to ",
    "remind me to ",
    "don't forget to ",
    "dont forget to ",
    "remember to ",
    "todo: ",
    "to do: ",
    "task: ",
)
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(p.title() for p in rest)


def _get(raw: dict[str, Any], key: str) -> Any:
    """Models answer in snake_case or camelCase; accept both."""
    if key in raw:
        return raw[key]
    return raw.get(_camel(key))


def _str(value: Any, max_len: int = 500) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text[:max_len] if text else None


def _enum(cls: type[E], value: Any) -> E | None:
    text = _str(value, 64)
    if text is None:
        return None
    try:
        return cls(text.lower().replace(" ", "_").replace("-", "_"))
    except ValueError:
        return None


def _date(value: Any) -> date | None:
    text = _str(value, 32)
    if text is None or not _DATE_RE.match(text):
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def _int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def normalize_confidence(value: Any) -> float:
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return DEFAULT_CONFIDENCE
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    if math.isnan(value):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return bool(value)


def clean_title(text: str) -> str:
    title = " ".join(text.split())
    lowered = title.lower()
    for prefix in _TITLE_PREFIXES:
        if lowered.startswith(prefix):
            title = title[len(prefix):]
            break
    title = title.rstrip(".!").strip()
    return title[:1].upper() + title[1:] if title else title


def missing_fields(task_type: TaskType | None, person_name: str | None) -> list[str]:
    missing: list[str] = []
    if task_type is None:
        missing.append("type")
    if task_type in PERSON_REQUIRED_TYPES and not person_name:
        missing.append("person_name")
    return missing


def normalize_draft(raw: Any, fallback_title: str | None) -> TaskDraft | None:
    """One task draft. Missing type / person are flagged, never defaulted."""
    if not isinstance(raw, dict):
        raw = {}
    title = clean_title(_str(_get(raw, "title")) or "") or (clean_title(fallback_title) if fallback_title else "")
    if not title:
        return None

    task_type = _enum(TaskType, _get(raw, "type"))
    person_name = _str(_get(raw, "person_name"), 255)
    missing = missing_fields(task_type, person_name)

    return TaskDraft(
        title=title,
        type=task_type,
        context=_enum(TaskContext, _get(raw, "context")),
        priority=_enum(TaskPriority, _get(raw, "priority")),
        due_date=_date(_get(raw, "due_date")),
        person_name=person_name,
        notes=_str(_get(raw, "notes"), 2000),
        missing_fields=missing,
    )


def normalize_entities(raw: Any) -> IntentEntities:
    """Known keys only; values with unrecognized enum members are dropped."""
    if not isinstance(raw, dict):
        return IntentEntities()
    return IntentEntities(
        task_text=_str(_get(raw, "task_text")),
        person_name=_str(_get(raw, "person_name"), 255),
        new_value=_str(_get(raw, "new_value")),
        context=_enum(TaskContext, _get(raw, "context")),
        priority=_enum(TaskPriority, _get(raw, "priority")),
        day_of_week=_enum(DayOfWeek, _get(raw, "day_of_week")),
        frequency=_enum(Frequency, _get(raw, "frequency")),
        time=_str(_get(raw, "time"), 32),
        timezone=_str(_get(raw, "timezone"), 64),
        hours=_int(_get(raw, "hours")),
        task_type=_enum(TaskType, _get(raw, "task_type")),
        due_date=_date(_get(raw, "due_date")),
        note=_str(_get(raw, "note"), 2000),
        alias=_str(_get(raw, "alias"), 255),
    )


def _lookups(raw: Any) -> list[RequiredLookup]:
    if not isinstance(raw, list):
        return []
    out: list[RequiredLookup] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        kind = _enum(LookupKind, item.get("type"))
        if kind is None:
            continue
        filt = item.get("filter") if isinstance(item.get("filter"), dict) else {}
        out.append(
            RequiredLookup(
                type=kind,
                query=_str(item.get("query")),
                filter={str(k): str(v) for k, v in filt.items() if v is not None},
            )
        )
    return out


def unknown(reasoning: str, confidence: float = 0.0) -> UnknownClassification:
    return UnknownClassification(confidence=confidence, needs_data_lookup=False, reasoning=reasoning)


def normalize_classification(raw: Any, message: str, *, max_items: int) -> ClassificationResult:
    if not isinstance(raw, dict):
        return unknown("model output is not an object")

    confidence = normalize_confidence(raw.get("confidence"))
    reasoning = _str(raw.get("reasoning"))
    needs_lookup = _flag(_get(raw, "needs_data_lookup"))
    kind = (_str(raw.get("type"), 64) or "").lower()

    if kind not in CLASSIFICATION_TYPES:
        logger.info("classifier: unknown type coerced", extra={"type": kind})
        return unknown(reasoning or f"unrecognized type '{kind}'", confidence)

    try:
        if kind == "task":
            draft = normalize_draft(_get(raw, "task_capture"), fallback_title=message)
            if draft is None:
                return unknown("task without a title", confidence)
            return TaskClassification(
                confidence=confidence,
                needs_data_lookup=needs_lookup,
                reasoning=reasoning,
                task_capture=draft,
            )

        if kind == "multi_item":
            raw_items = raw.get("items") if isinstance(raw.get("items"), list) else []
            drafts = [d for d in (normalize_draft(i, fallback_title=None) for i in raw_items) if d is not None]
            if not drafts:
                return unknown("multi_item without usable items", confidence)
            dropped = max(0, len(drafts) - max_items)
            if dropped:
                logger.info("classifier: multi_item truncated", extra={"items": len(drafts), "max": max_items})
            return MultiItemClassification(
                confidence=confidence,
                needs_data_lookup=needs_lookup,
                reasoning=reasoning,
                items=drafts[:max_items],
                dropped_items=dropped,
            )

        if kind == "intent":
            raw_intent = raw.get("intent") if isinstance(raw.get("intent"), dict) else {}
            intent_type = _enum(IntentType, raw_intent.get("type"))
            if intent_type is None:
                return unknown(f"unrecognized intent '{raw_intent.get('type')}'", confidence)
            return IntentClassification(
                confidence=confidence,
                needs_data_lookup=intent_type not in STATIC_INTENTS,
                reasoning=reasoning,
                intent=Intent(type=intent_type, entities=normalize_entities(raw_intent.get("entities"))),
                required_lookups=_lookups(_get(raw, "required_lookups")),
            )

        if kind == "needs_clarification":
            partial = _get(raw, "task_capture")
            return ClarificationClassification(
                confidence=confidence,
                needs_data_lookup=False,
                reasoning=reasoning,
                clarification_question=_str(_get(raw, "clarification_question")) or DEFAULT_CLARIFICATION,
                task_capture=normalize_draft(partial, fallback_title=message) if isinstance(partial, dict) else None,
            )
    except ValidationError as e:
        logger.warning("classifier: normalized result failed validation", extra={"type": kind, "error": str(e)})
        return unknown(f"invalid {kind} payload")

    return unknown(reasoning or "model could not classify", confidence)
