from gtd_agent.schemas.classification import (
    ClarificationClassification,
    ClassificationResult,
    IntentClassification,
    IntentEntities,
    MultiItemClassification,
    TaskClassification,
    TaskDraft,
    UnknownClassification,
)
from gtd_agent.schemas.context import (
    ActiveFlow,
    ContextDelta,
    ConversationContext,
    Correction,
    PersonRef,
    Session,
    TaskRef,
    TrackEntities,
)
from gtd_agent.schemas.turn import TurnRequest, TurnResponse
from gtd_agent.schemas.undo import UndoAction

__all__ = [
    "ActiveFlow",
    "ClarificationClassification",
    "ClassificationResult",
    "ContextDelta",
    "ConversationContext",
    "Correction",
    "IntentClassification",
    "IntentEntities",
    "MultiItemClassification",
    "PersonRef",
    "Session",
    "TaskClassification",
    "TaskDraft",
    "TaskRef",
    "TrackEntities",
    "TurnRequest",
    "TurnResponse",
    "UndoAction",
    "UnknownClassification",
]
