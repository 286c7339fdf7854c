"""Conversation orchestration."""

from .models import ConversationPhase, ConversationState, RunResult, SessionMetadata
from .orchestrator import ConversationOrchestrator

__all__ = [
    "ConversationOrchestrator",
    "ConversationPhase",
    "ConversationState",
    "RunResult",
    "SessionMetadata",
]
