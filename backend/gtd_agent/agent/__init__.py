"""Agent package: classifier, tool registry and executor, intent router, orchestrator."""

from gtd_agent.agent.classifier import MessageClassifier
from gtd_agent.agent.context_manager import ConversationContextManager
from gtd_agent.agent.executor import ToolCall, ToolExecutor
from gtd_agent.agent.locks import UserLocks
from gtd_agent.agent.orchestrator import AgentOrchestrator
from gtd_agent.agent.router import IntentRouter, RouterConfigError, Turn
from gtd_agent.agent.undo import UndoManager

__all__ = [
    "AgentOrchestrator",
    "ConversationContextManager",
    "IntentRouter",
    "MessageClassifier",
    "RouterConfigError",
    "ToolCall",
    "ToolExecutor",
    "Turn",
    "UndoManager",
    "UserLocks",
]
