"""Conversation Context — per (user, session) conversational memory."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from chat_kernel.models.errors import ErrorType
from chat_kernel.models.operation import EntityType, OperationType, ParsedOperation


class DisambiguationState(str, Enum):
    IDLE = "idle"
    AWAITING = "awaiting_disambiguation"


class HistoryEntry(BaseModel):
    """One user turn and the operation it resolved to (None if nothing ran)."""

    message: str
    operation: Optional[ParsedOperation] = None
    error_type: Optional[ErrorType] = None  # Set when the turn failed
    recorded_at: datetime


class ConversationContext(BaseModel):
    """
    Owned by the ContextStore. The disambiguation state is derived from
    ``pending_operation``, so a pending operation exists exactly while the
    context is awaiting a clarification reply.
    """

    id: str
    user_id: str
    session_id: str
    history: List[HistoryEntry] = []
    pending_operation: Optional[ParsedOperation] = None
    created_at: datetime
    last_activity_at: datetime

    @property
    def awaiting_disambiguation(self) -> bool:
        return self.pending_operation is not None

    @property
    def state(self) -> DisambiguationState:
        if self.pending_operation is not None:
            return DisambiguationState.AWAITING
        return DisambiguationState.IDLE


class SuggestionKind(str, Enum):
    RECENT_ACTIVITY = "recent_activity"
    PATTERN = "pattern"
    TIME_BASED = "time_based"
    COMPLETION = "completion"
    ERROR_RECOVERY = "error_recovery"


class ContextualSuggestion(BaseModel):
    """A next step offered to the user, ranked by relevance."""

    text: str
    kind: SuggestionKind
    relevance: float
    entity_type: Optional[EntityType] = None


class IntentPrediction(BaseModel):
    """Best guess at what the user will do next. Empty when there is no history."""

    intent: Optional[OperationType] = None
    entity_type: Optional[EntityType] = None
    confidence: float = 0.0
