"""
Context Store — per (user, session) conversational memory with TTL eviction.

Behavioral Contract:
- Mutations to one context are serialized by a per-id lock; different ids never contend
- Lock acquisition re-checks the lock registry, so an eviction racing with a
  request never leaves two live locks for one id
- A context idle longer than session_timeout_seconds is never handed out;
  it is replaced by a fresh one (no history or pending operation leaks)
- The background sweep takes an id's lock before deleting its context
- get_context returns a detached copy; only open() exposes the live object
"""

import asyncio
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

from chat_kernel.context.resolver import ReferenceResolver
from chat_kernel.context.suggestions import SuggestionEngine
from chat_kernel.models.config import ContextConfig
from chat_kernel.models.context import (
    ContextualSuggestion,
    ConversationContext,
    HistoryEntry,
    IntentPrediction,
)
from chat_kernel.models.errors import ErrorType
from chat_kernel.models.operation import ParsedOperation

logger = logging.getLogger(__name__)

DEFAULT_SESSION = "default"


class ContextNotFoundError(Exception):
    """Raised when a context id is not held by the store."""
    pass


def context_id_for(user_id: str, session_id: Optional[str] = None) -> str:
    return f"{user_id}::{session_id or DEFAULT_SESSION}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ContextStore:
    """
    In-memory context store. Locks are not re-entrant: do not call
    update_context or resolve_references while inside open() for the same id.
    """

    def __init__(
        self,
        config: Optional[ContextConfig] = None,
        resolver: Optional[ReferenceResolver] = None,
        suggester: Optional[SuggestionEngine] = None,
    ):
        self.config = config or ContextConfig()
        self.resolver = resolver or ReferenceResolver()
        self.suggester = suggester or SuggestionEngine()
        self._contexts: Dict[str, ConversationContext] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._running = False

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._contexts)

    @property
    def status(self) -> str:
        """Background sweeper status."""
        return "running" if self._running else "stopped"

    # --- Locking ---

    def _lock_for(self, context_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(context_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[context_id] = lock
            return lock

    @contextmanager
    def _locked(self, context_id: str) -> Iterator[None]:
        while True:
            lock = self._lock_for(context_id)
            lock.acquire()
            with self._registry_lock:
                current = self._locks.get(context_id)
            if current is lock:
                break
            # Evicted while we waited; retry against the replacement lock
            lock.release()
        try:
            yield
        finally:
            lock.release()

    # --- Access ---

    def _is_expired(self, context: ConversationContext, now: datetime) -> bool:
        idle = (now - context.last_activity_at).total_seconds()
        return idle > self.config.session_timeout_seconds

    def _get_or_create_unlocked(
        self, user_id: str, session_id: Optional[str], now: datetime
    ) -> ConversationContext:
        context_id = context_id_for(user_id, session_id)
        context = self._contexts.get(context_id)
        if context is not None and self._is_expired(context, now):
            logger.debug("Context %s expired; starting a fresh one", context_id)
            context = None
        if context is None:
            context = ConversationContext(
                id=context_id,
                user_id=user_id,
                session_id=session_id or DEFAULT_SESSION,
                created_at=now,
                last_activity_at=now,
            )
            with self._registry_lock:
                self._contexts[context_id] = context
        return context

    @contextmanager
    def open(
        self,
        user_id: str,
        session_id: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> Iterator[ConversationContext]:
        """Yield the live context under its lock, creating it if absent."""
        now = current_time or _now()
        with self._locked(context_id_for(user_id, session_id)):
            context = self._get_or_create_unlocked(user_id, session_id, now)
            context.last_activity_at = now
            yield context

    def get_context(
        self,
        user_id: str,
        session_id: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> ConversationContext:
        """Get (creating if absent) a detached copy of a context."""
        with self.open(user_id, session_id, current_time) as context:
            return context.model_copy(deep=True)

    def update_context(
        self,
        context_id: str,
        message: str,
        operation: Optional[ParsedOperation] = None,
        current_time: Optional[datetime] = None,
        error_type: Optional[ErrorType] = None,
    ) -> None:
        """Append one turn to a context's bounded history."""
        now = current_time or _now()
        with self._locked(context_id):
            context = self._contexts.get(context_id)
            if context is None:
                raise ContextNotFoundError(f"No context with id {context_id}")
            context.history.append(
                HistoryEntry(
                    message=message,
                    operation=operation,
                    error_type=error_type,
                    recorded_at=now,
                )
            )
            overflow = len(context.history) - self.config.max_history_length
            if overflow > 0:
                del context.history[:overflow]
            context.last_activity_at = now

    def resolve_references(self, context_id: str, text: str) -> str:
        with self._locked(context_id):
            context = self._contexts.get(context_id)
            if context is None:
                raise ContextNotFoundError(f"No context with id {context_id}")
            resolved, _ = self.resolver.resolve(context, text)
            return resolved

    def contextual_suggestions(
        self, context_id: str, current_time: Optional[datetime] = None
    ) -> List[ContextualSuggestion]:
        with self._locked(context_id):
            context = self._contexts.get(context_id)
            if context is None:
                raise ContextNotFoundError(f"No context with id {context_id}")
            return self.suggester.suggest(
                context, current_time or _now(), self.config.max_suggestions
            )

    def predict_intent(self, context_id: str) -> IntentPrediction:
        with self._locked(context_id):
            context = self._contexts.get(context_id)
            if context is None:
                raise ContextNotFoundError(f"No context with id {context_id}")
            return self.suggester.predict_intent(context)

    def summarize(self, context_id: str) -> dict:
        """Serializable overview of one conversation."""
        with self._locked(context_id):
            context = self._contexts.get(context_id)
            if context is None:
                raise ContextNotFoundError(f"No context with id {context_id}")
            operations = [e.operation for e in context.history if e.operation]
            recent = []
            for operation in reversed(operations):
                if operation.label not in recent:
                    recent.append(operation.label)
                if len(recent) == 5:
                    break
            return {
                "context_id": context.id,
                "user_id": context.user_id,
                "session_id": context.session_id,
                "state": context.state.value,
                "message_count": len(context.history),
                "operation_count": len(operations),
                "error_count": sum(1 for e in context.history if e.error_type),
                "pending_operation": (
                    context.pending_operation.label
                    if context.pending_operation else None
                ),
                "recent_entities": recent,
                "created_at": context.created_at.isoformat(),
                "last_activity_at": context.last_activity_at.isoformat(),
            }

    # --- Eviction ---

    def sweep_once(self, current_time: Optional[datetime] = None) -> int:
        """Evict idle contexts. Returns how many were removed."""
        now = current_time or _now()
        with self._registry_lock:
            candidates = [
                cid for cid, ctx in self._contexts.items()
                if self._is_expired(ctx, now)
            ]

        evicted = 0
        for context_id in candidates:
            with self._locked(context_id):
                context = self._contexts.get(context_id)
                if context is None:
                    with self._registry_lock:
                        self._locks.pop(context_id, None)
                    continue
                # Re-check: a request may have touched it since the scan
                if not self._is_expired(context, now):
                    continue
                with self._registry_lock:
                    del self._contexts[context_id]
                    self._locks.pop(context_id, None)
                evicted += 1

        if evicted:
            logger.info("Evicted %d idle context(s)", evicted)
        return evicted

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run the eviction sweep periodically until stop_event is set."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                self.sweep_once()
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self.config.sweep_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False

    def clear(self) -> None:
        """Drop every context."""
        with self._registry_lock:
            self._contexts.clear()
            self._locks.clear()
