"""Parsed Operation — the Parser's structured reading of a chat message."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EntityType(str, Enum):
    HABIT = "habit"
    GOAL = "goal"
    JOURNAL = "journal"
    MOOD = "mood"
    ROUTINE = "routine"
    BELIEF = "belief"
    SYNCHRONICITY = "synchronicity"


class OperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    COMPLETE = "complete"
    DELETE = "delete"
    QUERY = "query"
    DISCOVER = "discover"


# Field that names an existing entity of each type (used for look-ups and
# back-references). Mood entries are addressed by recency, not by name.
IDENTIFIER_FIELDS: Dict[EntityType, Optional[str]] = {
    EntityType.HABIT: "name",
    EntityType.GOAL: "title",
    EntityType.JOURNAL: "title",
    EntityType.MOOD: None,
    EntityType.ROUTINE: "name",
    EntityType.BELIEF: "statement",
    EntityType.SYNCHRONICITY: "description",
}


class OperationCandidate(BaseModel):
    """One possible interpretation: what to do, to which kind of entity."""

    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    intent: OperationType
    parameters: Dict[str, Any] = {}

    @property
    def target_name(self) -> Optional[str]:
        """Name of the entity this candidate refers to, if any."""
        field = IDENTIFIER_FIELDS.get(self.entity_type)
        if field is None:
            return None
        value = self.parameters.get(field)
        return value if isinstance(value, str) and value else None


class Alternative(BaseModel):
    """A ranked alternative interpretation with a human-readable label."""

    model_config = ConfigDict(frozen=True)

    operation: OperationCandidate
    confidence: float = Field(ge=0.0, le=1.0)
    label: str


def describe_candidate(candidate: OperationCandidate) -> str:
    """Short label such as ``Complete habit "Morning Run"``."""
    label = f"{candidate.intent.value.capitalize()} {candidate.entity_type.value}"
    name = candidate.target_name
    if name:
        label += f' "{name}"'
    return label


class ParsedOperation(BaseModel):
    """
    The Parser's best guess for a message. Immutable once produced.

    ``alternatives`` holds the runner-up interpretations, best first; the
    best guess itself is not repeated there.
    """

    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    intent: OperationType
    parameters: Dict[str, Any] = {}
    confidence: float = Field(ge=0.0, le=1.0)
    alternatives: List[Alternative] = []
    needs_disambiguation: bool = False
    original_message: str
    suggestions: List[str] = []

    @property
    def candidate(self) -> OperationCandidate:
        return OperationCandidate(
            entity_type=self.entity_type,
            intent=self.intent,
            parameters=self.parameters,
        )

    @property
    def target_name(self) -> Optional[str]:
        return self.candidate.target_name

    @property
    def label(self) -> str:
        return describe_candidate(self.candidate)

    def disambiguation_options(self) -> List[Alternative]:
        """The best guess followed by the alternatives, as offered to the user."""
        best = Alternative(
            operation=self.candidate,
            confidence=self.confidence,
            label=self.label,
        )
        return [best] + list(self.alternatives)

    def with_disambiguation(self) -> "ParsedOperation":
        return self.model_copy(update={"needs_disambiguation": True})

    @classmethod
    def from_alternative(
        cls, alternative: Alternative, original_message: str
    ) -> "ParsedOperation":
        """Promote a chosen alternative to a standalone, dispatchable operation."""
        return cls(
            entity_type=alternative.operation.entity_type,
            intent=alternative.operation.intent,
            parameters=dict(alternative.operation.parameters),
            confidence=alternative.confidence,
            original_message=original_message,
        )
