"""Tests for the disambiguation controller."""

from datetime import datetime, timezone

import pytest

from chat_kernel.disambiguation.controller import DisambiguationController
from chat_kernel.models.config import DisambiguationConfig
from chat_kernel.models.context import ConversationContext, DisambiguationState
from chat_kernel.models.errors import ErrorType
from chat_kernel.models.operation import (
    Alternative,
    EntityType,
    OperationCandidate,
    OperationType,
    ParsedOperation,
    describe_candidate,
)


def _make_alternative(entity_type, name, confidence) -> Alternative:
    field = "title" if entity_type == EntityType.GOAL else "name"
    candidate = OperationCandidate(
        entity_type=entity_type,
        intent=OperationType.COMPLETE,
        parameters={field: name},
    )
    return Alternative(
        operation=candidate, confidence=confidence, label=describe_candidate(candidate)
    )


def _make_operation(confidence=0.55, alternatives=None) -> ParsedOperation:
    if alternatives is None:
        alternatives = [
            _make_alternative(EntityType.HABIT, "Evening Meditation", 0.52),
            _make_alternative(EntityType.GOAL, "Read Books", 0.4),
        ]
    return ParsedOperation(
        entity_type=EntityType.HABIT,
        intent=OperationType.COMPLETE,
        parameters={"name": "Morning Meditation"},
        confidence=confidence,
        alternatives=alternatives,
        original_message="complete meditation",
    )


def _make_context() -> ConversationContext:
    now = datetime.now(timezone.utc)
    return ConversationContext(
        id="u1::default", user_id="u1", session_id="default",
        created_at=now, last_activity_at=now,
    )


def _awaiting(controller=None):
    controller = controller or DisambiguationController()
    context = _make_context()
    controller.begin(context, controller.evaluate(_make_operation()))
    return controller, context


class TestEvaluate:
    def test_confident_operation_passes(self):
        op = _make_operation(confidence=0.9, alternatives=[])
        assert DisambiguationController().evaluate(op).needs_disambiguation is False

    def test_low_confidence_is_flagged(self):
        op = _make_operation(confidence=0.6, alternatives=[])
        assert DisambiguationController().evaluate(op).needs_disambiguation is True

    def test_close_runner_up_is_flagged(self):
        op = _make_operation(
            confidence=0.9,
            alternatives=[_make_alternative(EntityType.HABIT, "Evening Meditation", 0.85)],
        )
        assert DisambiguationController().evaluate(op).needs_disambiguation is True

    def test_distant_runner_up_passes(self):
        op = _make_operation(
            confidence=0.95,
            alternatives=[_make_alternative(EntityType.HABIT, "Evening Meditation", 0.6)],
        )
        assert DisambiguationController().evaluate(op).needs_disambiguation is False

    def test_disabled(self):
        controller = DisambiguationController(DisambiguationConfig(enabled=False))
        assert controller.evaluate(_make_operation()).needs_disambiguation is False


class TestBegin:
    def test_parks_operation_and_numbers_options(self):
        controller = DisambiguationController()
        context = _make_context()
        options = controller.begin(context, _make_operation())

        assert context.state == DisambiguationState.AWAITING
        assert context.pending_operation.needs_disambiguation is True
        assert [o.index for o in options] == [1, 2, 3]
        assert options[0].label == 'Complete habit "Morning Meditation"'
        assert options[1].label == 'Complete habit "Evening Meditation"'
        assert options[2].label == 'Complete goal "Read Books"'


class TestResolveReply:
    def test_number_selects_option(self):
        controller, context = _awaiting()
        result = controller.resolve_reply(context, "2")
        assert result.error is None
        assert result.operation.parameters == {"name": "Evening Meditation"}
        assert result.operation.confidence == 0.52
        assert context.pending_operation is None
        assert context.state == DisambiguationState.IDLE

    @pytest.mark.parametrize("reply", ["option 3", "#3", "third", "the third one", "3."])
    def test_number_forms(self, reply):
        controller, context = _awaiting()
        result = controller.resolve_reply(context, reply)
        assert result.operation.entity_type == EntityType.GOAL
        assert result.operation.parameters == {"title": "Read Books"}

    @pytest.mark.parametrize("reply", ["4", "0", "option 9"])
    def test_out_of_range_keeps_waiting(self, reply):
        controller, context = _awaiting()
        pending = context.pending_operation
        result = controller.resolve_reply(context, reply)
        assert result.operation is None
        assert result.error.type == ErrorType.DISAMBIGUATION
        assert result.error.retryable is True
        assert "1 to 3" in result.error.suggestions[0]
        assert context.pending_operation is pending

    def test_fuzzy_label_match(self):
        controller, context = _awaiting()
        result = controller.resolve_reply(context, "the evening one")
        assert result.operation.parameters == {"name": "Evening Meditation"}

    def test_fuzzy_match_must_be_unique(self):
        controller, context = _awaiting()
        result = controller.resolve_reply(context, "meditation")
        assert result.error is not None
        assert context.awaiting_disambiguation is True

    def test_unrelated_reply(self):
        controller, context = _awaiting()
        result = controller.resolve_reply(context, "banana")
        assert result.error.code == "DISAMBIG_001"
        assert context.awaiting_disambiguation is True

    def test_resolved_operation_is_dispatchable(self):
        controller, context = _awaiting()
        op = controller.resolve_reply(context, "1").operation
        assert op.needs_disambiguation is False
        assert op.alternatives == []
        assert op.original_message == "complete meditation"

    def test_requires_pending_operation(self):
        with pytest.raises(ValueError):
            DisambiguationController().resolve_reply(_make_context(), "1")
