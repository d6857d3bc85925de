"""
Reference Resolver — rewrites back-references using conversation history.

"it", "that one", "this one", "the last one" refer to the most recent
named entity of any type; "the same habit", "that goal", "this routine"
refer to the most recent one of that type. A reference with no
compatible referent is left as written.

Only lookups are rewritten: a message that creates an entity carries
free text, so callers check mentions_reference and the parsed intent
before calling resolve.
"""

import logging
import re
from typing import Optional, Tuple

from chat_kernel.models.context import ConversationContext
from chat_kernel.models.operation import EntityType

logger = logging.getLogger(__name__)

_TYPES = "|".join(t.value for t in EntityType)
_REFERENCE = re.compile(
    rf"(?P<typed>\b(?:the same|that|this) (?P<type>{_TYPES})\b)"
    r"|(?P<generic>\b(?:that one|this one|the last one|it)\b(?!'))",
    re.IGNORECASE,
)


class ReferenceResolver:
    """Stateless; operates on a context the caller has already locked or copied."""

    def mentions_reference(self, text: str) -> bool:
        return _REFERENCE.search(text) is not None

    def resolve(self, context: ConversationContext, text: str) -> Tuple[str, bool]:
        """Return the rewritten text and whether any reference was resolved."""
        used = False

        def substitute(match: "re.Match") -> str:
            nonlocal used
            wanted = None
            if match.group("typed"):
                wanted = EntityType(match.group("type").lower())
            referent = self.find_referent(context, wanted)
            if referent is None:
                return match.group(0)
            used = True
            entity_type, name = referent
            return f'the {entity_type.value} "{name}"'

        resolved = _REFERENCE.sub(substitute, text)
        if used:
            logger.debug("Resolved references in %r -> %r", text, resolved)
        return resolved, used

    def find_referent(
        self,
        context: ConversationContext,
        entity_type: Optional[EntityType] = None,
    ) -> Optional[Tuple[EntityType, str]]:
        """Most recent named entity in history, optionally of one type."""
        for entry in reversed(context.history):
            operation = entry.operation
            if operation is None or operation.target_name is None:
                continue
            if entity_type is not None and operation.entity_type != entity_type:
                continue
            return operation.entity_type, operation.target_name
        return None
