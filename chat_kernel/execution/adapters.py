"""
Entity operation adapters — the one capability the kernel consumes from
each domain area.

An adapter executes a ParsedOperation and returns an OperationResult. It
may expose for_user(user_id) to return a handle bound to one user; the
dispatcher caches those handles. Plain callables taking the operation
are accepted as adapters too.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol
from uuid import uuid4

from chat_kernel.entities.store import EntityStore
from chat_kernel.models.entity import EntityRecord
from chat_kernel.models.execution import OperationResult
from chat_kernel.models.operation import (
    IDENTIFIER_FIELDS,
    EntityType,
    OperationType,
    ParsedOperation,
)


class EntityOperationAdapter(Protocol):
    def execute(self, operation: ParsedOperation) -> OperationResult:
        ...


# Parameters that steer the operation rather than describe the entity
_CONTROL_PARAMS = {"filter"}


class StoreBackedAdapter:
    """
    Default adapter for one entity type, backed by the in-memory EntityStore.
    Unbound instances act for the "default" user.
    """

    def __init__(
        self,
        store: EntityStore,
        entity_type: EntityType,
        user_id: Optional[str] = None,
    ):
        self.store = store
        self.entity_type = entity_type
        self.user_id = user_id or "default"
        self._handlers: Dict[OperationType, Callable] = {
            OperationType.CREATE: self._create,
            OperationType.UPDATE: self._update,
            OperationType.COMPLETE: self._complete,
            OperationType.DELETE: self._delete,
            OperationType.QUERY: self._query,
            OperationType.DISCOVER: self._discover,
        }

    def for_user(self, user_id: str) -> "StoreBackedAdapter":
        return StoreBackedAdapter(self.store, self.entity_type, user_id)

    def execute(self, operation: ParsedOperation) -> OperationResult:
        if operation.entity_type != self.entity_type:
            return OperationResult(
                success=False,
                message=f"{self.entity_type.value} adapter cannot handle {operation.entity_type.value}",
                retryable=False,
            )
        return self._handlers[operation.intent](operation)

    @property
    def _identifier(self) -> Optional[str]:
        return IDENTIFIER_FIELDS.get(self.entity_type)

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _target(self, operation: ParsedOperation) -> Optional[EntityRecord]:
        """Named entity, or the most recent one for types without names."""
        if self._identifier is None:
            records = self.store.list(self.user_id, self.entity_type)
            return records[-1] if records else None
        name = operation.parameters.get(self._identifier)
        if not name:
            return None
        return self.store.find_by_name(self.user_id, self.entity_type, name)

    def _not_found(self, operation: ParsedOperation) -> OperationResult:
        name = operation.target_name
        what = f'{self.entity_type.value} "{name}"' if name else f"{self.entity_type.value}"
        return OperationResult(
            success=False, message=f"No {what} found", retryable=False
        )

    def _properties(self, operation: ParsedOperation) -> dict:
        return {
            k: v for k, v in operation.parameters.items()
            if k != self._identifier and k not in _CONTROL_PARAMS
            and not k.startswith("new_")
        }

    # --- Handlers ---

    def _create(self, operation: ParsedOperation) -> OperationResult:
        now = self._now()
        if self._identifier is not None:
            name = operation.parameters.get(self._identifier)
            if name is None and self.entity_type == EntityType.JOURNAL:
                name = operation.parameters.get("content", "")[:60]
            if self.entity_type != EntityType.JOURNAL and self.store.find_by_name(
                self.user_id, self.entity_type, name
            ):
                return OperationResult(
                    success=False,
                    message=f'{self.entity_type.value.capitalize()} "{name}" already exists',
                    retryable=False,
                )
        else:
            rating = operation.parameters.get("mood_rating")
            name = f"Mood {rating}/10 at {now.strftime('%Y-%m-%d %H:%M')}"

        record = EntityRecord(
            entity_id=f"{self.entity_type.value}_{uuid4().hex[:12]}",
            user_id=self.user_id,
            entity_type=self.entity_type,
            name=name,
            properties=self._properties(operation),
            created_at=now,
            last_updated=now,
        )
        self.store.upsert(record)
        return OperationResult(
            success=True,
            message=f'Created {self.entity_type.value} "{name}"',
            data=record.model_dump(mode="json"),
        )

    def _update(self, operation: ParsedOperation) -> OperationResult:
        record = self._target(operation)
        if record is None:
            return self._not_found(operation)

        updates = self._properties(operation)
        changes = dict(updates)
        new_name = operation.parameters.get(f"new_{self._identifier}") if self._identifier else None
        if new_name:
            changes["name"] = new_name
        if not changes:
            return OperationResult(
                success=False,
                message=f'Nothing to change on {self.entity_type.value} "{record.name}"',
                retryable=False,
            )

        updated = record.model_copy(update={
            "name": new_name or record.name,
            "properties": {**record.properties, **updates},
            "last_updated": self._now(),
        })
        self.store.upsert(updated)
        return OperationResult(
            success=True,
            message=f'Updated {self.entity_type.value} "{updated.name}"',
            data={"entity": updated.model_dump(mode="json"), "fields": sorted(changes)},
        )

    def _complete(self, operation: ParsedOperation) -> OperationResult:
        record = self._target(operation)
        if record is None:
            return self._not_found(operation)

        now = self._now()
        if self.entity_type in (EntityType.HABIT, EntityType.ROUTINE):
            updated = record.model_copy(update={
                "completions": record.completions + [now],
                "last_updated": now,
            })
            message = (
                f'Completed {self.entity_type.value} "{record.name}" '
                f"({len(updated.completions)} time{'s' if len(updated.completions) != 1 else ''})"
            )
        else:
            updated = record.model_copy(update={"completed": True, "last_updated": now})
            message = f'Completed {self.entity_type.value} "{record.name}"'
        self.store.upsert(updated)
        return OperationResult(
            success=True, message=message, data=updated.model_dump(mode="json")
        )

    def _delete(self, operation: ParsedOperation) -> OperationResult:
        record = self._target(operation)
        if record is None:
            return self._not_found(operation)
        self.store.remove(record.entity_id)
        return OperationResult(
            success=True,
            message=f'Deleted {self.entity_type.value} "{record.name}"',
            data={"entity_id": record.entity_id},
        )

    def _query(self, operation: ParsedOperation) -> OperationResult:
        records = self.store.list(self.user_id, self.entity_type)
        needle = operation.parameters.get("filter")
        if self._identifier is not None:
            needle = operation.parameters.get(self._identifier) or needle
        if needle:
            records = [r for r in records if needle.lower() in r.name.lower()]
        return OperationResult(
            success=True,
            message=f"Found {len(records)} {self.entity_type.value} item(s)",
            data=[r.model_dump(mode="json") for r in records],
        )

    def _discover(self, operation: ParsedOperation) -> OperationResult:
        records = self.store.list(self.user_id, self.entity_type)
        stats = {
            "count": len(records),
            "completed": sum(1 for r in records if r.completed),
            "total_completions": sum(len(r.completions) for r in records),
        }
        if records:
            stats["most_recent"] = records[-1].name
        ratings = [
            r.properties["mood_rating"] for r in records
            if isinstance(r.properties.get("mood_rating"), int)
        ]
        if ratings:
            stats["average_mood_rating"] = round(sum(ratings) / len(ratings), 2)
        return OperationResult(
            success=True,
            message=f"{len(records)} {self.entity_type.value} item(s) analysed",
            data=stats,
        )


def build_default_adapters(store: EntityStore) -> Dict[EntityType, StoreBackedAdapter]:
    """One store-backed adapter per entity type."""
    return {
        entity_type: StoreBackedAdapter(store, entity_type)
        for entity_type in EntityType
    }
