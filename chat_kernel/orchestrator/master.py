"""
Chat Entity Orchestrator — the single public entry point.

Composes the parser, context store, disambiguation controller, error
classifier, dispatcher and metrics aggregator for each incoming message:

  open context → resolve pending reply?
    → parse (and re-parse with back-references resolved) → disambiguate?
    → validate → dispatch → record → suggest

Behavioral Contract:
- process_message never raises; every failure becomes a typed error response
- Context locks are held only for short read-modify-write steps, never
  across parsing or dispatch
- An operation that needs disambiguation is parked, never dispatched
- History keeps the operation only when it executed successfully
- Back-references are rewritten only in lookups, never in text being created
- Only a result the dispatcher flagged cancelled goes unrecorded
- Service integrations are fixed at construction; update_config rejects them
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from pydantic import ValidationError

from chat_kernel.context.store import ContextNotFoundError, ContextStore, context_id_for
from chat_kernel.disambiguation.controller import DisambiguationController
from chat_kernel.entities.store import EntityStore
from chat_kernel.errors.classifier import ErrorClassifier, ErrorStats, EscalationTracker
from chat_kernel.execution.adapters import build_default_adapters
from chat_kernel.execution.dispatcher import OperationDispatcher
from chat_kernel.metrics.aggregator import MetricsAggregator
from chat_kernel.models.api import (
    BatchItem,
    BatchResponse,
    BatchResult,
    BatchSummary,
    ChatEntityRequest,
    ChatEntityResponse,
    DisambiguationOption,
    ResponseMetadata,
)
from chat_kernel.models.config import ChatEntityConfig
from chat_kernel.models.context import (
    ContextualSuggestion,
    ConversationContext,
    IntentPrediction,
)
from chat_kernel.models.errors import ChatEntityError, ErrorAnalytics
from chat_kernel.models.execution import ExtendedOperationResult
from chat_kernel.models.metrics import HealthReport, PerformanceMetrics
from chat_kernel.models.operation import EntityType, OperationType, ParsedOperation
from chat_kernel.parser.engine import CommandParser, KnownEntities, RuleBasedParser
from chat_kernel.parser.validation import validate_parameters

logger = logging.getLogger(__name__)

DISAMBIGUATION_HINT = "Reply with the number of the option you meant"


class ConfigError(Exception):
    """Raised when a configuration update is rejected."""
    pass


def _deep_merge(base: dict, updates: dict) -> dict:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 3)


class ChatEntityOrchestrator:
    """
    Wires the kernel together. Every collaborator can be injected;
    the defaults run against an in-memory EntityStore.
    """

    def __init__(
        self,
        config: Optional[ChatEntityConfig] = None,
        parser: Optional[CommandParser] = None,
        adapters: Optional[Dict[EntityType, Any]] = None,
        entity_store: Optional[EntityStore] = None,
        context_store: Optional[ContextStore] = None,
        metrics: Optional[MetricsAggregator] = None,
        classifier: Optional[ErrorClassifier] = None,
        catalog: Optional[Callable[[str], KnownEntities]] = None,
        on_escalation: Optional[Callable[[str, int], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or ChatEntityConfig()
        self.entity_store = entity_store or EntityStore()
        self.parser = parser or RuleBasedParser(self.config.parser)
        self.contexts = context_store or ContextStore(self.config.context)
        self.metrics = metrics or MetricsAggregator(self.config.monitoring)
        self.classifier = classifier or ErrorClassifier()
        self.disambiguation = DisambiguationController(
            self.config.disambiguation, self.classifier
        )
        self.escalation = EscalationTracker(
            self.config.error_handling.escalation_threshold, on_escalation
        )
        self.error_stats = ErrorStats(self.config.error_handling.analytics_retention_seconds)
        if adapters is None:
            adapters = build_default_adapters(self.entity_store)
        self.dispatcher = OperationDispatcher(
            adapters,
            config=self.config,
            metrics=self.metrics,
            classifier=self.classifier,
            sleep=sleep,
        )
        self.catalog = catalog or self.entity_store.names_by_type
        self._config_lock = threading.Lock()

    # --- Entry point ---

    def process_message(
        self,
        request: ChatEntityRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> ChatEntityResponse:
        """Interpret and execute one chat message. Never raises."""
        start = time.monotonic()
        request_id = f"req_{uuid4().hex[:12]}"
        try:
            return self._process(request, request_id, start, cancel_event)
        except Exception as e:
            logger.exception("Unexpected failure processing request %s", request_id)
            return self._fail(request, request_id, start, self.classifier.unexpected(e))

    def _process(
        self,
        request: ChatEntityRequest,
        request_id: str,
        start: float,
        cancel_event: Optional[threading.Event],
    ) -> ChatEntityResponse:
        user_id, session_id = request.user_id, request.session_id
        context_id = context_id_for(user_id, session_id)
        operation: Optional[ParsedOperation] = None
        snapshot: Optional[ConversationContext] = None
        context_used = False

        with self.contexts.open(user_id, session_id) as context:
            if context.awaiting_disambiguation:
                resolution = self.disambiguation.resolve_reply(context, request.message)
                if resolution.error is not None:
                    return self._fail(request, request_id, start, resolution.error)
                operation = resolution.operation
                context_used = True
            elif (
                request.options.use_context
                and self.config.context.enabled
                and self.contexts.resolver.mentions_reference(request.message)
            ):
                snapshot = context.model_copy(deep=True)

        if operation is None:
            parse_start = time.monotonic()
            parsed = self.parser.parse(request.message, self.catalog(user_id))
            # Created text is content; only lookups get their references rewritten
            if snapshot is not None and (
                parsed is None or parsed.intent != OperationType.CREATE
            ):
                text, context_used = self.contexts.resolver.resolve(snapshot, request.message)
                if context_used:
                    parsed = self.parser.parse(text, self.catalog(user_id))
            self.metrics.record_parse(_elapsed_ms(parse_start))

            if parsed is None:
                error = self.classifier.parsing(request.message)
                self._remember(context_id, request.message, None, error)
                return self._fail(request, request_id, start, error)

            parsed = self.disambiguation.evaluate(parsed)
            if parsed.needs_disambiguation:
                return self._ask(request, request_id, start, parsed)
            operation = parsed

        issues = validate_parameters(operation)
        if issues:
            error = self.classifier.validation(operation, issues)
            self._remember(context_id, request.message, None, error)
            return self._fail(request, request_id, start, error, operation=operation)

        result = self.dispatcher.execute(
            operation, user_id, context_used=context_used, cancel_event=cancel_event
        )
        if result.cancelled:
            # Abandoned by the caller: leave context and metrics untouched
            return self._respond(
                request_id, start, success=False, operation=operation,
                result=result, error=result.error,
            )

        self.metrics.record_request(result.success, _elapsed_ms(start), operation.confidence)
        if not result.success:
            self._remember(context_id, request.message, None, result.error)
            self.escalation.record_failure(user_id)
            self.error_stats.record(user_id, result.error)
            return self._respond(
                request_id, start, success=False, operation=operation,
                result=result, error=result.error,
            )

        self._remember(context_id, request.message, operation)
        self.escalation.record_success(user_id)
        suggestions = list(operation.suggestions)
        if self.config.context.enabled:
            suggestions.extend(s.text for s in self._suggestions_for(context_id))
        return self._respond(
            request_id, start,
            success=True,
            operation=operation,
            result=result,
            suggestions=list(dict.fromkeys(suggestions)),
        )

    # --- Response helpers ---

    def _ask(
        self,
        request: ChatEntityRequest,
        request_id: str,
        start: float,
        operation: ParsedOperation,
    ) -> ChatEntityResponse:
        """Park an ambiguous operation and ask the user to choose."""
        with self.contexts.open(request.user_id, request.session_id) as context:
            options = self.disambiguation.begin(context, operation)
            operation = context.pending_operation
        self._remember(context_id_for(request.user_id, request.session_id), request.message, None)
        self.metrics.record_disambiguation(_elapsed_ms(start))
        logger.debug(
            "Asking %s to choose between %d options", request.user_id, len(options)
        )
        return self._respond(
            request_id, start,
            success=False,
            operation=operation,
            suggestions=[DISAMBIGUATION_HINT],
            needs_disambiguation=True,
            disambiguation_options=options,
        )

    def _fail(
        self,
        request: ChatEntityRequest,
        request_id: str,
        start: float,
        error: ChatEntityError,
        operation: Optional[ParsedOperation] = None,
    ) -> ChatEntityResponse:
        confidence = operation.confidence if operation is not None else None
        self.metrics.record_request(False, _elapsed_ms(start), confidence)
        self.escalation.record_failure(request.user_id)
        self.error_stats.record(request.user_id, error)
        return self._respond(
            request_id, start, success=False, operation=operation, error=error
        )

    def _respond(
        self,
        request_id: str,
        start: float,
        success: bool,
        operation: Optional[ParsedOperation] = None,
        result: Optional[ExtendedOperationResult] = None,
        error: Optional[ChatEntityError] = None,
        suggestions: Optional[List[str]] = None,
        needs_disambiguation: bool = False,
        disambiguation_options: Optional[List[DisambiguationOption]] = None,
    ) -> ChatEntityResponse:
        if suggestions is None:
            suggestions = list(error.suggestions) if error is not None else []
        return ChatEntityResponse(
            success=success,
            operation=operation,
            result=result,
            error=error,
            suggestions=suggestions,
            needs_disambiguation=needs_disambiguation,
            disambiguation_options=disambiguation_options or [],
            metadata=ResponseMetadata(
                request_id=request_id,
                timestamp=datetime.now(timezone.utc),
                processing_time_ms=_elapsed_ms(start),
                confidence_score=operation.confidence if operation is not None else None,
            ),
        )

    def _remember(
        self,
        context_id: str,
        message: str,
        operation: Optional[ParsedOperation],
        error: Optional[ChatEntityError] = None,
    ) -> None:
        try:
            self.contexts.update_context(
                context_id, message, operation,
                error_type=error.type if error is not None else None,
            )
        except ContextNotFoundError:
            logger.debug("Context %s was evicted before the turn was recorded", context_id)

    def _suggestions_for(self, context_id: str) -> List[ContextualSuggestion]:
        try:
            return self.contexts.contextual_suggestions(context_id)
        except ContextNotFoundError:
            return []

    # --- Batch ---

    def process_batch(self, items: List[BatchItem]) -> BatchResponse:
        """Process independent requests concurrently."""
        if not items:
            return BatchResponse(
                results=[],
                summary=BatchSummary(
                    total_requests=0,
                    successful_requests=0,
                    average_processing_time_ms=0.0,
                    average_confidence=0.0,
                ),
            )

        workers = min(len(items), self.config.execution.max_workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="chat-batch") as pool:
            responses = list(pool.map(self.process_message, [i.request for i in items]))

        confidences = [
            r.metadata.confidence_score for r in responses
            if r.metadata.confidence_score is not None
        ]
        return BatchResponse(
            results=[
                BatchResult(id=item.id, response=response)
                for item, response in zip(items, responses)
            ],
            summary=BatchSummary(
                total_requests=len(responses),
                successful_requests=sum(1 for r in responses if r.success),
                average_processing_time_ms=round(
                    sum(r.metadata.processing_time_ms for r in responses) / len(responses), 3
                ),
                average_confidence=(
                    round(sum(confidences) / len(confidences), 4) if confidences else 0.0
                ),
            ),
        )

    # --- Secondary entry points ---

    def get_metrics(self) -> PerformanceMetrics:
        return self.metrics.snapshot()

    def get_health_status(self) -> HealthReport:
        return self.metrics.health()

    def reset_metrics(self) -> None:
        self.metrics.reset()

    def get_context_summary(self, user_id: str, session_id: Optional[str] = None) -> dict:
        return self.contexts.summarize(context_id_for(user_id, session_id))

    def get_contextual_suggestions(
        self, user_id: str, session_id: Optional[str] = None
    ) -> List[ContextualSuggestion]:
        return self.contexts.contextual_suggestions(context_id_for(user_id, session_id))

    def predict_intent(
        self, user_id: str, session_id: Optional[str] = None
    ) -> IntentPrediction:
        """Guess the user's next operation from their conversation so far."""
        return self.contexts.predict_intent(context_id_for(user_id, session_id))

    def get_error_analytics(self) -> ErrorAnalytics:
        return self.error_stats.snapshot()

    def register_adapter(self, entity_type: EntityType, adapter: Any) -> None:
        self.dispatcher.register_adapter(entity_type, adapter)

    def update_config(self, partial: dict) -> ChatEntityConfig:
        """Deep-merge a partial configuration and push it to every component."""
        if "integrations" in partial:
            logger.warning("Rejected config update touching service integrations")
            raise ConfigError("Service integrations are read-only after startup")

        with self._config_lock:
            merged = _deep_merge(self.config.model_dump(), partial)
            try:
                config = ChatEntityConfig.model_validate(merged)
            except ValidationError as e:
                logger.warning("Rejected invalid config update: %s", e)
                raise ConfigError(str(e)) from e

            self.config = config
            if isinstance(self.parser, RuleBasedParser):
                self.parser.config = config.parser
            self.contexts.config = config.context
            self.disambiguation.config = config.disambiguation
            self.escalation.threshold = config.error_handling.escalation_threshold
            self.error_stats.retention_seconds = config.error_handling.analytics_retention_seconds
            self.metrics.configure(config.monitoring)
            self.dispatcher.config = config

        logger.info("Configuration updated: %s", sorted(partial))
        return config

    def cleanup(self) -> dict:
        """Drop cached adapter handles and evict idle contexts."""
        dropped = self.dispatcher.clear_handles()
        evicted = self.contexts.sweep_once()
        logger.info("Cleanup dropped %d handle(s), evicted %d context(s)", dropped, evicted)
        return {"handles_dropped": dropped, "contexts_evicted": evicted}

    def shutdown(self) -> None:
        self.dispatcher.shutdown()
