"""
Parameter validation for parsed operations.

Each entity type has a pydantic parameter schema. Validation reports
problems as short human-readable issues rather than raising, so the
orchestrator can turn them into a Validation error with suggestions.
"""

from datetime import date
from typing import Dict, List, Literal, Optional, Set, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chat_kernel.models.operation import (
    IDENTIFIER_FIELDS,
    EntityType,
    OperationType,
    ParsedOperation,
)


class _Parameters(BaseModel):
    model_config = ConfigDict(extra="allow")

    filter: Optional[str] = None
    tags: List[str] = []


class HabitParameters(_Parameters):
    name: Optional[str] = None
    frequency: Optional[Literal["daily", "weekly", "monthly"]] = None
    reminder_time: Optional[str] = None


class GoalParameters(_Parameters):
    title: Optional[str] = None
    priority: Optional[Literal["low", "medium", "high"]] = None
    target_date: Optional[date] = None


class JournalParameters(_Parameters):
    title: Optional[str] = None
    content: Optional[str] = None


class MoodParameters(_Parameters):
    mood_rating: Optional[int] = Field(default=None, ge=1, le=10)
    energy_level: Optional[int] = Field(default=None, ge=1, le=10)
    mood: Optional[str] = None
    notes: Optional[str] = None


class RoutineParameters(_Parameters):
    name: Optional[str] = None
    frequency: Optional[Literal["daily", "weekly", "monthly"]] = None
    reminder_time: Optional[str] = None


class BeliefParameters(_Parameters):
    statement: Optional[str] = None


class SynchronicityParameters(_Parameters):
    description: Optional[str] = None


PARAMETER_SCHEMAS: Dict[EntityType, Type[_Parameters]] = {
    EntityType.HABIT: HabitParameters,
    EntityType.GOAL: GoalParameters,
    EntityType.JOURNAL: JournalParameters,
    EntityType.MOOD: MoodParameters,
    EntityType.ROUTINE: RoutineParameters,
    EntityType.BELIEF: BeliefParameters,
    EntityType.SYNCHRONICITY: SynchronicityParameters,
}

# Field a create must carry for each type
CREATE_FIELDS: Dict[EntityType, str] = {
    EntityType.HABIT: "name",
    EntityType.GOAL: "title",
    EntityType.JOURNAL: "content",
    EntityType.MOOD: "mood_rating",
    EntityType.ROUTINE: "name",
    EntityType.BELIEF: "statement",
    EntityType.SYNCHRONICITY: "description",
}

_ALL_INTENTS = set(OperationType)
_NO_COMPLETE = _ALL_INTENTS - {OperationType.COMPLETE}

SUPPORTED_INTENTS: Dict[EntityType, Set[OperationType]] = {
    EntityType.HABIT: _ALL_INTENTS,
    EntityType.GOAL: _ALL_INTENTS,
    EntityType.JOURNAL: _NO_COMPLETE,
    EntityType.MOOD: _NO_COMPLETE,
    EntityType.ROUTINE: _ALL_INTENTS,
    EntityType.BELIEF: _ALL_INTENTS,
    EntityType.SYNCHRONICITY: _NO_COMPLETE,
}


def required_fields(entity_type: EntityType, intent: OperationType) -> List[str]:
    """Parameters an operation needs before it can be dispatched."""
    if intent == OperationType.CREATE:
        return [CREATE_FIELDS[entity_type]]
    if intent in (OperationType.UPDATE, OperationType.COMPLETE, OperationType.DELETE):
        field = IDENTIFIER_FIELDS.get(entity_type)
        return [field] if field else []
    return []


def is_supported(entity_type: EntityType, intent: OperationType) -> bool:
    return intent in SUPPORTED_INTENTS.get(entity_type, set())


def validate_parameters(operation: ParsedOperation) -> List[str]:
    """Return a list of issues; an empty list means the operation is valid."""
    if not is_supported(operation.entity_type, operation.intent):
        return [
            f"cannot {operation.intent.value} a {operation.entity_type.value}"
        ]

    issues = []
    for field in required_fields(operation.entity_type, operation.intent):
        value = operation.parameters.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            issues.append(f"missing {field}")

    schema = PARAMETER_SCHEMAS[operation.entity_type]
    try:
        schema.model_validate(operation.parameters)
    except ValidationError as e:
        for err in e.errors():
            location = ".".join(str(part) for part in err["loc"])
            issues.append(f"invalid {location}: {err['msg']}")

    return issues
