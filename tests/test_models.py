"""Tests for core data models."""

from datetime import datetime, timezone

import pytest

from chat_kernel.models import (
    Alternative,
    ChatEntityConfig,
    ConversationContext,
    DisambiguationState,
    EntityType,
    FallbackStrategy,
    OperationCandidate,
    OperationType,
    ParsedOperation,
    ServiceIntegrationConfig,
)
from chat_kernel.models.operation import describe_candidate


def _make_operation(**overrides) -> ParsedOperation:
    fields = dict(
        entity_type=EntityType.HABIT,
        intent=OperationType.COMPLETE,
        parameters={"name": "Morning Meditation"},
        confidence=0.55,
        alternatives=[
            Alternative(
                operation=OperationCandidate(
                    entity_type=EntityType.HABIT,
                    intent=OperationType.COMPLETE,
                    parameters={"name": "Evening Meditation"},
                ),
                confidence=0.52,
                label='Complete habit "Evening Meditation"',
            )
        ],
        original_message="complete meditation",
    )
    fields.update(overrides)
    return ParsedOperation(**fields)


class TestParsedOperation:
    def test_immutable(self):
        op = _make_operation()
        with pytest.raises(Exception):
            op.confidence = 0.99

    def test_confidence_bounds(self):
        with pytest.raises(Exception):
            _make_operation(confidence=1.2)
        with pytest.raises(Exception):
            _make_operation(confidence=-0.1)

    def test_disambiguation_options_lead_with_best_guess(self):
        op = _make_operation()
        options = op.disambiguation_options()
        assert len(options) == 2
        assert options[0].operation.parameters["name"] == "Morning Meditation"
        assert options[0].confidence == 0.55
        assert options[1].operation.parameters["name"] == "Evening Meditation"

    def test_with_disambiguation_returns_flagged_copy(self):
        op = _make_operation()
        flagged = op.with_disambiguation()
        assert flagged.needs_disambiguation is True
        assert op.needs_disambiguation is False

    def test_from_alternative(self):
        op = _make_operation()
        chosen = ParsedOperation.from_alternative(op.alternatives[0], op.original_message)
        assert chosen.parameters == {"name": "Evening Meditation"}
        assert chosen.confidence == 0.52
        assert chosen.alternatives == []
        assert chosen.needs_disambiguation is False
        assert chosen.original_message == "complete meditation"

    def test_target_name_per_type(self):
        assert _make_operation().target_name == "Morning Meditation"
        mood = _make_operation(
            entity_type=EntityType.MOOD,
            intent=OperationType.CREATE,
            parameters={"mood_rating": 7},
            alternatives=[],
        )
        assert mood.target_name is None

    def test_label_has_no_internal_ids(self):
        label = describe_candidate(OperationCandidate(
            entity_type=EntityType.GOAL,
            intent=OperationType.UPDATE,
            parameters={"title": "Learn Spanish", "entity_id": "goal_abc"},
        ))
        assert label == 'Update goal "Learn Spanish"'


class TestConversationContext:
    def _make_context(self) -> ConversationContext:
        now = datetime.now(timezone.utc)
        return ConversationContext(
            id="u1::default",
            user_id="u1",
            session_id="default",
            created_at=now,
            last_activity_at=now,
        )

    def test_state_derived_from_pending_operation(self):
        context = self._make_context()
        assert context.state == DisambiguationState.IDLE
        assert context.awaiting_disambiguation is False

        context.pending_operation = _make_operation().with_disambiguation()
        assert context.state == DisambiguationState.AWAITING
        assert context.awaiting_disambiguation is True

        context.pending_operation = None
        assert context.state == DisambiguationState.IDLE


class TestConfig:
    def test_default_integrations(self):
        config = ChatEntityConfig()
        assert config.integration_for(EntityType.JOURNAL).fallback_strategy == FallbackStrategy.DEGRADE
        assert config.integration_for(EntityType.MOOD).fallback_strategy == FallbackStrategy.DEGRADE
        habit = config.integration_for(EntityType.HABIT)
        assert habit.fallback_strategy == FallbackStrategy.RETRY
        assert habit.timeout_ms == 5000
        assert habit.max_retries == 2

    def test_integration_config_is_read_only(self):
        integration = ServiceIntegrationConfig()
        with pytest.raises(Exception):
            integration.timeout_ms = 10

    def test_defaults(self):
        config = ChatEntityConfig()
        assert config.disambiguation.confidence_threshold == 0.75
        assert config.disambiguation.tie_delta == 0.1
        assert config.context.session_timeout_seconds == 1800
        assert config.context.max_history_length == 100
        assert config.error_handling.escalation_threshold == 5
        assert config.monitoring.thresholds.unhealthy_error_rate == 0.2

    def test_round_trip(self):
        config = ChatEntityConfig()
        restored = ChatEntityConfig.model_validate(config.model_dump(mode="json"))
        assert restored == config
