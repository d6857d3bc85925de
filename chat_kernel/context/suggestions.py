"""
Contextual Suggestions — next steps and intent prediction from history.

Suggestions are drawn from recently touched entities, the most used entity
type, the time of day, a pending clarification and recent errors, then
ranked by relevance. Stateless; operates on a context the caller has
already locked or copied.
"""

from collections import Counter
from datetime import datetime
from typing import Dict, List

from chat_kernel.models.context import (
    ContextualSuggestion,
    ConversationContext,
    IntentPrediction,
    SuggestionKind,
)
from chat_kernel.models.errors import ErrorType
from chat_kernel.models.operation import EntityType, OperationType

TIME_OF_DAY_HINTS: Dict[str, List[str]] = {
    "morning": ["Check your daily habits", "Review your goals", "Set an intention for today"],
    "afternoon": ["Log progress on a goal", "Update a habit", "Write a quick reflection"],
    "evening": ["Complete your daily review", "Write a journal entry", "Plan tomorrow's routine"],
    "night": ["Log your mood", "Write a gratitude entry", "Start your evening routine"],
}

RECOVERY_HINTS: Dict[ErrorType, str] = {
    ErrorType.PARSING: 'Start with an action and a type, e.g. "create habit Read"',
    ErrorType.VALIDATION: "Include every detail the item needs, such as its name",
    ErrorType.SERVICE: "Try that again in a moment",
    ErrorType.TIMEOUT: "Try that again in a moment",
    ErrorType.DISAMBIGUATION: "Reply with the option number when asked to choose",
}

# Predictions at or below this confidence are not offered
PREDICTION_FLOOR = 0.3
RECENT_QUERY_CONFIDENCE = 0.35


def time_of_day(moment: datetime) -> str:
    hour = moment.hour
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def plural(entity_type: EntityType) -> str:
    if entity_type == EntityType.SYNCHRONICITY:
        return "synchronicities"
    return f"{entity_type.value}s"


class SuggestionEngine:
    """Builds ranked suggestions and a next-intent guess for one context."""

    def suggest(
        self, context: ConversationContext, now: datetime, limit: int = 5
    ) -> List[ContextualSuggestion]:
        candidates: List[ContextualSuggestion] = []
        candidates.extend(self._completion(context))
        candidates.extend(self._recent_activity(context))
        candidates.extend(self._patterns(context))
        candidates.extend(self._time_based(now))
        candidates.extend(self._error_recovery(context))

        # sorted() is stable, so equal relevance keeps source order
        ranked = sorted(candidates, key=lambda s: -s.relevance)
        unique: List[ContextualSuggestion] = []
        seen = set()
        for suggestion in ranked:
            if suggestion.text in seen:
                continue
            seen.add(suggestion.text)
            unique.append(suggestion)
        return unique[:limit]

    def predict_intent(self, context: ConversationContext) -> IntentPrediction:
        operations = [e.operation for e in context.history if e.operation is not None]
        if not operations:
            return IntentPrediction()

        pairs = Counter((op.intent, op.entity_type) for op in operations)
        (intent, entity_type), count = pairs.most_common(1)[0]
        predictions = [
            IntentPrediction(
                intent=intent,
                entity_type=entity_type,
                confidence=round(0.8 * count / len(operations), 4),
            ),
            IntentPrediction(
                intent=OperationType.QUERY,
                entity_type=operations[-1].entity_type,
                confidence=RECENT_QUERY_CONFIDENCE,
            ),
        ]
        plausible = [p for p in predictions if p.confidence > PREDICTION_FLOOR]
        if not plausible:
            return IntentPrediction()
        return max(plausible, key=lambda p: p.confidence)

    # --- Sources ---

    def _completion(self, context: ConversationContext) -> List[ContextualSuggestion]:
        pending = context.pending_operation
        if pending is None:
            return []
        return [ContextualSuggestion(
            text="Finish choosing an option for your last request",
            kind=SuggestionKind.COMPLETION,
            relevance=0.8,
            entity_type=pending.entity_type,
        )]

    def _recent_activity(self, context: ConversationContext) -> List[ContextualSuggestion]:
        suggestions = []
        seen = set()
        for entry in reversed(context.history):
            operation = entry.operation
            if operation is None or operation.target_name is None:
                continue
            key = (operation.entity_type, operation.target_name.lower())
            if key in seen:
                continue
            seen.add(key)
            # A deleted entity is not worth continuing with
            if operation.intent == OperationType.DELETE:
                continue
            suggestions.append(ContextualSuggestion(
                text=f'Continue with {operation.entity_type.value} "{operation.target_name}"',
                kind=SuggestionKind.RECENT_ACTIVITY,
                relevance=round(0.7 - 0.05 * len(suggestions), 2),
                entity_type=operation.entity_type,
            ))
            if len(suggestions) == 3:
                break
        return suggestions

    def _patterns(self, context: ConversationContext) -> List[ContextualSuggestion]:
        types = Counter(
            e.operation.entity_type for e in context.history if e.operation is not None
        )
        if not types:
            return []
        entity_type, count = types.most_common(1)[0]
        if count < 2:
            return []
        return [ContextualSuggestion(
            text=f"Show my {plural(entity_type)}",
            kind=SuggestionKind.PATTERN,
            relevance=0.6,
            entity_type=entity_type,
        )]

    def _time_based(self, now: datetime) -> List[ContextualSuggestion]:
        return [
            ContextualSuggestion(text=text, kind=SuggestionKind.TIME_BASED, relevance=0.5)
            for text in TIME_OF_DAY_HINTS[time_of_day(now)]
        ]

    def _error_recovery(self, context: ConversationContext) -> List[ContextualSuggestion]:
        recent = [e.error_type for e in context.history[-3:] if e.error_type is not None]
        return [
            ContextualSuggestion(
                text=RECOVERY_HINTS[error_type],
                kind=SuggestionKind.ERROR_RECOVERY,
                relevance=0.4,
            )
            for error_type in dict.fromkeys(reversed(recent))
        ]
