"""
Error Classifier — turns every failure into a typed ChatEntityError.

Behavioral Contract:
- Stateless: the same failure always classifies the same way
- Retryable errors carry a "try again" hint; non-retryable ones carry
  corrective suggestions instead
- Never raises; unexpected faults become a critical Service error

Two stateful pieces live here. The EscalationTracker counts consecutive
failures per user and notifies an optional hook once per streak when the
escalation threshold is reached. ErrorStats keeps running totals by type
and code, plus each user's errors within a retention window.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from chat_kernel.models.errors import (
    ChatEntityError,
    ErrorAnalytics,
    ErrorCodeCount,
    ErrorSeverity,
    ErrorType,
    UserErrorPattern,
)
from chat_kernel.models.operation import EntityType, ParsedOperation

logger = logging.getLogger(__name__)

RETRY_HINT = "You can try again in a moment."

ACTION_WORDS = [
    "add", "create", "new", "make", "update", "edit", "change", "delete",
    "remove", "show", "view", "list", "complete", "done",
]
ENTITY_WORDS = [
    "habit", "goal", "journal", "entry", "mood", "routine", "belief",
    "synchronicity",
]
TYPO_CORRECTIONS = {
    "habbit": "habit",
    "goall": "goal",
    "jurnal": "journal",
    "creat": "create",
    "updat": "update",
    "delet": "delete",
}
EXAMPLE_COMMANDS = [
    "Create habit to drink water daily",
    "Add goal to learn Spanish by 2026-12-31",
    "Show my journal entries",
]
NAME_EXAMPLES: Dict[EntityType, List[str]] = {
    EntityType.HABIT: ["Drink 8 glasses of water", "Read before bed"],
    EntityType.GOAL: ["Learn Spanish", "Run a marathon"],
    EntityType.JOURNAL: ["Weekend reflection", "Work progress"],
    EntityType.MOOD: ["Morning mood check"],
    EntityType.ROUTINE: ["Morning routine", "Evening wind-down"],
    EntityType.BELIEF: ["I am capable", "Growth mindset"],
    EntityType.SYNCHRONICITY: ["Meeting an old friend", "Perfect timing"],
}


class ErrorClassifier:
    """Maps the origin of a failure to a ChatEntityError."""

    def parsing(self, message: str) -> ChatEntityError:
        """No interpretation cleared the plausibility floor."""
        suggestions = self._parsing_suggestions(message)
        text = f"I couldn't understand \"{message.strip()}\"."
        return ChatEntityError(
            type=ErrorType.PARSING,
            severity=ErrorSeverity.MEDIUM,
            message=text,
            retryable=False,
            suggestions=suggestions or ["Could you rephrase your request?"],
            code="PARSE_001",
        )

    def validation(
        self, operation: ParsedOperation, issues: List[str]
    ) -> ChatEntityError:
        """A parsed operation is missing or has invalid parameters."""
        suggestions = []
        entity = operation.entity_type.value
        for issue in issues:
            if issue.startswith("cannot "):
                suggestions.append(
                    f"A {entity} can be created, updated, deleted or listed instead"
                )
            elif "name" in issue or "title" in issue:
                examples = ", ".join(f'"{e}"' for e in NAME_EXAMPLES[operation.entity_type])
                suggestions.append(f"Give your {entity} a descriptive name, e.g. {examples}")
            elif "content" in issue or "statement" in issue or "description" in issue:
                suggestions.append(f"Add the text of the {entity}")
            elif "mood_rating" in issue or "energy_level" in issue:
                suggestions.append("Rate it from 1 (very bad) to 10 (excellent), e.g. 7/10")
            elif "frequency" in issue:
                suggestions.append("Use daily, weekly or monthly")
            elif "priority" in issue:
                suggestions.append("Use low, medium or high priority")
            elif "target_date" in issue:
                suggestions.append("Write dates as YYYY-MM-DD")
        return ChatEntityError(
            type=ErrorType.VALIDATION,
            severity=ErrorSeverity.LOW,
            message=f"Can't {operation.intent.value} that {entity}: {'; '.join(issues)}",
            retryable=False,
            suggestions=list(dict.fromkeys(suggestions)),
            code="VALID_001",
            details={"issues": issues},
        )

    def service(
        self,
        operation: ParsedOperation,
        reason: str,
        retryable: Optional[bool] = None,
    ) -> ChatEntityError:
        """The adapter raised or reported a failure. The adapter's hint wins."""
        retryable = True if retryable is None else retryable
        suggestions = [RETRY_HINT] if retryable else []
        suggestions.append("Check that the item exists and try the manual form if this persists")
        return ChatEntityError(
            type=ErrorType.SERVICE,
            severity=ErrorSeverity.HIGH,
            message=f"Couldn't {operation.intent.value} the {operation.entity_type.value}: {reason}",
            retryable=retryable,
            suggestions=suggestions,
            code="SVC_001",
        )

    def unsupported(self, operation: ParsedOperation) -> ChatEntityError:
        return ChatEntityError(
            type=ErrorType.SERVICE,
            severity=ErrorSeverity.HIGH,
            message=f"Entity type not supported: {operation.entity_type.value}",
            retryable=False,
            suggestions=["Try one of: " + ", ".join(ENTITY_WORDS)],
            code="SVC_002",
        )

    def timeout(
        self, operation: ParsedOperation, timeout_ms: int, attempts: int
    ) -> ChatEntityError:
        return ChatEntityError(
            type=ErrorType.TIMEOUT,
            severity=ErrorSeverity.HIGH,
            message=(
                f"The {operation.entity_type.value} service did not answer within "
                f"{timeout_ms} ms ({attempts} attempt{'s' if attempts != 1 else ''})"
            ),
            retryable=True,
            suggestions=[RETRY_HINT],
            code="NET_002",
            details={"timeout_ms": timeout_ms, "attempts": attempts},
        )

    def disambiguation(self, reply: str, option_count: int) -> ChatEntityError:
        """A clarification reply matched no option, or more than one."""
        return ChatEntityError(
            type=ErrorType.DISAMBIGUATION,
            severity=ErrorSeverity.LOW,
            message=f"\"{reply.strip()}\" didn't pick one of the {option_count} options.",
            retryable=True,
            suggestions=[
                f"Reply with a number from 1 to {option_count}",
                RETRY_HINT,
            ],
            code="DISAMBIG_001",
        )

    def unexpected(self, exc: BaseException) -> ChatEntityError:
        """A fault inside the kernel, caught at the orchestrator boundary."""
        return ChatEntityError(
            type=ErrorType.SERVICE,
            severity=ErrorSeverity.CRITICAL,
            message="Something went wrong while processing your message.",
            retryable=True,
            suggestions=[RETRY_HINT],
            code="SYS_001",
            details={"exception": type(exc).__name__},
        )

    def _parsing_suggestions(self, message: str) -> List[str]:
        lowered = message.lower()
        words = lowered.split()
        suggestions = []

        if len(message.strip()) < 10 or len(words) < 3:
            suggestions.append(
                "Be more specific, e.g. " + "; ".join(f'"{e}"' for e in EXAMPLE_COMMANDS)
            )
        if not any(word in lowered for word in ACTION_WORDS):
            suggestions.append(
                'Start with an action word like "add", "create", "show", "update" or "delete"'
            )
        if not any(word in lowered for word in ENTITY_WORDS):
            suggestions.append(
                "Mention what you're working with: habit, goal, journal entry, mood, routine or belief"
            )

        corrected = [TYPO_CORRECTIONS.get(word, word) for word in words]
        if corrected != words:
            suggestions.append(f'Did you mean "{" ".join(corrected)}"?')

        return suggestions[:4]


class EscalationTracker:
    """
    Counts consecutive failures per user. The hook fires once when a
    streak reaches the threshold; a success resets the streak.
    """

    def __init__(
        self,
        threshold: int = 5,
        on_escalation: Optional[Callable[[str, int], None]] = None,
    ):
        self.threshold = threshold
        self.on_escalation = on_escalation
        self._streaks: Dict[str, int] = {}
        self._lock = threading.Lock()

    def record_failure(self, user_id: str) -> int:
        with self._lock:
            count = self._streaks.get(user_id, 0) + 1
            self._streaks[user_id] = count
        if count == self.threshold:
            logger.warning(
                "User %s reached %d consecutive failures; escalating", user_id, count
            )
            if self.on_escalation is not None:
                try:
                    self.on_escalation(user_id, count)
                except Exception:
                    logger.exception("Escalation hook failed for user %s", user_id)
        return count

    def record_success(self, user_id: str) -> None:
        with self._lock:
            self._streaks.pop(user_id, None)

    def streak(self, user_id: str) -> int:
        with self._lock:
            return self._streaks.get(user_id, 0)

    def reset(self) -> None:
        with self._lock:
            self._streaks.clear()


class ErrorStats:
    """Error analytics for monitoring. Per-user history is pruned on write and read."""

    def __init__(
        self,
        retention_seconds: float = 24 * 60 * 60,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.retention_seconds = retention_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._counts: Dict[Tuple[ErrorType, str], int] = {}
        self._by_user: Dict[str, List[datetime]] = {}
        self._lock = threading.Lock()

    def record(self, user_id: str, error: ChatEntityError) -> None:
        now = self._clock()
        cutoff = now - timedelta(seconds=self.retention_seconds)
        with self._lock:
            key = (error.type, error.code)
            self._counts[key] = self._counts.get(key, 0) + 1
            recent = [t for t in self._by_user.get(user_id, []) if t > cutoff]
            recent.append(now)
            self._by_user[user_id] = recent

    def snapshot(self, limit: int = 10) -> ErrorAnalytics:
        cutoff = self._clock() - timedelta(seconds=self.retention_seconds)
        by_type = {error_type: 0 for error_type in ErrorType}
        codes: Dict[str, int] = {}
        users = []
        with self._lock:
            for (error_type, code), count in self._counts.items():
                by_type[error_type] += count
                codes[code] = codes.get(code, 0) + count
            for user_id, times in self._by_user.items():
                recent = [t for t in times if t > cutoff]
                if recent:
                    users.append(UserErrorPattern(
                        user_id=user_id,
                        error_count=len(recent),
                        last_error_at=recent[-1],
                    ))
            total = sum(self._counts.values())

        top_codes = sorted(codes.items(), key=lambda item: -item[1])[:limit]
        users.sort(key=lambda pattern: -pattern.error_count)
        return ErrorAnalytics(
            total_errors=total,
            errors_by_type=by_type,
            top_error_codes=[ErrorCodeCount(code=c, count=n) for c, n in top_codes],
            user_error_patterns=users[:limit],
        )

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
            self._by_user.clear()
