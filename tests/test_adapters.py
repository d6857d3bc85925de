"""Tests for the entity store and the default store-backed adapters."""

from datetime import datetime, timedelta, timezone

from chat_kernel.entities.store import EntityStore
from chat_kernel.execution.adapters import StoreBackedAdapter, build_default_adapters
from chat_kernel.models.entity import EntityRecord
from chat_kernel.models.operation import EntityType, OperationType, ParsedOperation

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _make_record(name, entity_type=EntityType.HABIT, user_id="u1", minutes=0, **extra):
    created = T0 + timedelta(minutes=minutes)
    return EntityRecord(
        entity_id=f"{entity_type.value}_{name.lower().replace(' ', '_')}_{user_id}",
        user_id=user_id,
        entity_type=entity_type,
        name=name,
        created_at=created,
        last_updated=created,
        **extra,
    )


def _make_operation(intent, entity_type=EntityType.HABIT, **parameters):
    return ParsedOperation(
        entity_type=entity_type,
        intent=intent,
        parameters=parameters,
        confidence=0.9,
        original_message="test",
    )


class TestEntityStore:
    def test_list_is_per_user_and_ordered(self):
        store = EntityStore()
        store.upsert(_make_record("Later", minutes=5))
        store.upsert(_make_record("Earlier", minutes=1))
        store.upsert(_make_record("Other", user_id="u2"))
        assert [r.name for r in store.list("u1")] == ["Earlier", "Later"]

    def test_find_by_name_ignores_case(self):
        store = EntityStore()
        store.upsert(_make_record("Morning Run"))
        assert store.find_by_name("u1", EntityType.HABIT, " morning RUN ") is not None
        assert store.find_by_name("u1", EntityType.GOAL, "morning run") is None

    def test_names_by_type_skips_unnamed_types(self):
        store = EntityStore()
        store.upsert(_make_record("Morning Run"))
        store.upsert(_make_record("Learn Spanish", EntityType.GOAL))
        store.upsert(_make_record("Mood 7/10", EntityType.MOOD))
        assert store.names_by_type("u1") == {
            EntityType.HABIT: ["Morning Run"],
            EntityType.GOAL: ["Learn Spanish"],
        }

    def test_remove(self):
        store = EntityStore()
        record = _make_record("Morning Run")
        store.upsert(record)
        assert store.remove(record.entity_id) is True
        assert store.remove(record.entity_id) is False
        assert store.snapshot() == {}


class TestStoreBackedAdapter:
    def _adapter(self, entity_type=EntityType.HABIT):
        return StoreBackedAdapter(EntityStore(), entity_type).for_user("u1")

    def test_create(self):
        adapter = self._adapter()
        result = adapter.execute(_make_operation(
            OperationType.CREATE, name="Drink Water", frequency="daily"
        ))
        assert result.success is True
        assert result.data["name"] == "Drink Water"
        assert result.data["properties"] == {"frequency": "daily"}
        assert adapter.store.find_by_name("u1", EntityType.HABIT, "drink water") is not None

    def test_create_duplicate_is_not_retryable(self):
        adapter = self._adapter()
        adapter.execute(_make_operation(OperationType.CREATE, name="Read"))
        result = adapter.execute(_make_operation(OperationType.CREATE, name="read"))
        assert result.success is False
        assert result.retryable is False

    def test_create_mood_generates_name(self):
        adapter = self._adapter(EntityType.MOOD)
        result = adapter.execute(_make_operation(
            OperationType.CREATE, EntityType.MOOD, mood_rating=7, mood="good"
        ))
        assert result.success is True
        assert result.data["name"].startswith("Mood 7/10 at ")
        assert result.data["properties"]["mood_rating"] == 7

    def test_create_journal_allows_repeats(self):
        adapter = self._adapter(EntityType.JOURNAL)
        op = _make_operation(OperationType.CREATE, EntityType.JOURNAL, content="Slept well")
        assert adapter.execute(op).success is True
        assert adapter.execute(op).success is True
        assert len(adapter.store.list("u1", EntityType.JOURNAL)) == 2

    def test_rename(self):
        adapter = self._adapter()
        adapter.execute(_make_operation(OperationType.CREATE, name="Morning Run"))
        result = adapter.execute(_make_operation(
            OperationType.UPDATE, name="Morning Run", new_name="Evening Run"
        ))
        assert result.success is True
        assert result.data["fields"] == ["name"]
        assert adapter.store.find_by_name("u1", EntityType.HABIT, "Evening Run") is not None

    def test_update_without_changes(self):
        adapter = self._adapter()
        adapter.execute(_make_operation(OperationType.CREATE, name="Morning Run"))
        result = adapter.execute(_make_operation(OperationType.UPDATE, name="Morning Run"))
        assert result.success is False
        assert result.retryable is False

    def test_complete_habit_counts_completions(self):
        adapter = self._adapter()
        adapter.execute(_make_operation(OperationType.CREATE, name="Morning Run"))
        adapter.execute(_make_operation(OperationType.COMPLETE, name="morning run"))
        result = adapter.execute(_make_operation(OperationType.COMPLETE, name="Morning Run"))
        assert result.success is True
        assert len(result.data["completions"]) == 2
        assert "(2 times)" in result.message

    def test_complete_goal_sets_flag(self):
        adapter = self._adapter(EntityType.GOAL)
        adapter.execute(_make_operation(OperationType.CREATE, EntityType.GOAL, title="Learn Spanish"))
        result = adapter.execute(_make_operation(
            OperationType.COMPLETE, EntityType.GOAL, title="Learn Spanish"
        ))
        assert result.data["completed"] is True

    def test_missing_entity(self):
        result = self._adapter().execute(_make_operation(OperationType.DELETE, name="Ghost"))
        assert result.success is False
        assert result.retryable is False
        assert result.message == 'No habit "Ghost" found'

    def test_delete(self):
        adapter = self._adapter()
        adapter.execute(_make_operation(OperationType.CREATE, name="Morning Run"))
        result = adapter.execute(_make_operation(OperationType.DELETE, name="Morning Run"))
        assert result.success is True
        assert adapter.store.list("u1") == []

    def test_query_with_filter(self):
        adapter = self._adapter()
        for name in ("Morning Run", "Evening Run", "Read"):
            adapter.execute(_make_operation(OperationType.CREATE, name=name))
        everything = adapter.execute(_make_operation(OperationType.QUERY))
        runs = adapter.execute(_make_operation(OperationType.QUERY, filter="run"))
        assert len(everything.data) == 3
        assert [r["name"] for r in runs.data] == ["Morning Run", "Evening Run"]

    def test_discover_moods(self):
        adapter = self._adapter(EntityType.MOOD)
        for rating in (6, 8):
            adapter.execute(_make_operation(OperationType.CREATE, EntityType.MOOD, mood_rating=rating))
        result = adapter.execute(_make_operation(OperationType.DISCOVER, EntityType.MOOD))
        assert result.data["count"] == 2
        assert result.data["average_mood_rating"] == 7.0

    def test_users_are_isolated(self):
        base = StoreBackedAdapter(EntityStore(), EntityType.HABIT)
        base.for_user("u1").execute(_make_operation(OperationType.CREATE, name="Morning Run"))
        result = base.for_user("u2").execute(_make_operation(OperationType.QUERY))
        assert result.data == []

    def test_rejects_other_entity_types(self):
        result = self._adapter().execute(_make_operation(
            OperationType.QUERY, EntityType.GOAL
        ))
        assert result.success is False
        assert result.retryable is False

    def test_default_adapters_cover_every_type(self):
        adapters = build_default_adapters(EntityStore())
        assert set(adapters) == set(EntityType)
