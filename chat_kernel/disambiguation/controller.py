"""
Disambiguation Controller — the clarify-then-resume protocol.

States (carried on the ConversationContext via pending_operation):
  IDLE → (low-confidence or tied parse) → AWAITING
  AWAITING → (valid reply) → IDLE, chosen operation dispatched
  AWAITING → (unresolvable reply) → AWAITING, error surfaced
  AWAITING → (session timeout) → IDLE, nothing dispatched

Behavioral Contract:
- Callers hold the context's lock for begin() and resolve_reply()
- A failed reply leaves the pending operation untouched
- A successful reply clears the pending operation before returning
- Option labels never expose internal identifiers
"""

import re
from typing import List, Optional

from pydantic import BaseModel

from chat_kernel.errors.classifier import ErrorClassifier
from chat_kernel.models.api import DisambiguationOption
from chat_kernel.models.config import DisambiguationConfig
from chat_kernel.models.context import ConversationContext
from chat_kernel.models.errors import ChatEntityError
from chat_kernel.models.operation import ParsedOperation

ORDINALS = {
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5,
    "two": 2, "three": 3, "four": 4, "five": 5,
}
_NUMBERED = re.compile(r"^(?:option|number|choice|#)?\s*(\d+)$")
_WORD = re.compile(r"[\w']+")
_REPLY_FILLER = {
    "the", "a", "an", "one", "option", "please", "that", "this", "i",
    "mean", "meant", "want",
}


class ReplyResolution(BaseModel):
    """Exactly one of operation / error is set."""

    operation: Optional[ParsedOperation] = None
    error: Optional[ChatEntityError] = None


class DisambiguationController:

    def __init__(
        self,
        config: Optional[DisambiguationConfig] = None,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.config = config or DisambiguationConfig()
        self.classifier = classifier or ErrorClassifier()

    def evaluate(self, operation: ParsedOperation) -> ParsedOperation:
        """Flag the operation when it is below threshold or tied with its runner-up."""
        if not self.config.enabled or operation.needs_disambiguation:
            return operation
        ambiguous = operation.confidence < self.config.confidence_threshold
        if operation.alternatives:
            gap = operation.confidence - operation.alternatives[0].confidence
            ambiguous = ambiguous or gap < self.config.tie_delta
        return operation.with_disambiguation() if ambiguous else operation

    def begin(
        self, context: ConversationContext, operation: ParsedOperation
    ) -> List[DisambiguationOption]:
        """Park the operation on the context and return numbered choices."""
        if not operation.needs_disambiguation:
            operation = operation.with_disambiguation()
        context.pending_operation = operation
        return [
            DisambiguationOption(index=i, label=alt.label, confidence=alt.confidence)
            for i, alt in enumerate(operation.disambiguation_options(), start=1)
        ]

    def resolve_reply(
        self, context: ConversationContext, reply: str
    ) -> ReplyResolution:
        pending = context.pending_operation
        if pending is None:
            raise ValueError(f"Context {context.id} is not awaiting disambiguation")

        options = pending.disambiguation_options()
        index = self._parse_index(reply)
        if index is not None:
            if not 1 <= index <= len(options):
                return ReplyResolution(
                    error=self.classifier.disambiguation(reply, len(options))
                )
            chosen = options[index - 1]
        else:
            chosen = self._match_label(reply, options)
            if chosen is None:
                return ReplyResolution(
                    error=self.classifier.disambiguation(reply, len(options))
                )

        context.pending_operation = None
        return ReplyResolution(
            operation=ParsedOperation.from_alternative(chosen, pending.original_message)
        )

    def _parse_index(self, reply: str) -> Optional[int]:
        text = reply.strip().lower().rstrip(".!")
        match = _NUMBERED.match(text)
        if match:
            return int(match.group(1))
        words = [w for w in text.split() if w not in ("the", "one", "option")]
        if len(words) == 1 and words[0] in ORDINALS:
            return ORDINALS[words[0]]
        return None

    def _match_label(self, reply: str, options):
        reply_words = {
            w for w in _WORD.findall(reply.lower()) if w not in _REPLY_FILLER
        }
        if not reply_words:
            return None

        qualifying = []
        for option in options:
            label_words = set(_WORD.findall(option.label.lower()))
            common = reply_words & label_words
            score = (len(common) / len(label_words) + len(common) / len(reply_words)) / 2
            if score >= self.config.match_floor:
                qualifying.append(option)

        return qualifying[0] if len(qualifying) == 1 else None
