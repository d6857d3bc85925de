"""
Entity Store — the user's habits, goals, journal entries and the rest.

Updated by: the default entity adapters
Queried by: the orchestrator, for the parser's catalog of known names
"""

import threading
from typing import Dict, List, Optional

from chat_kernel.models.entity import EntityRecord
from chat_kernel.models.operation import IDENTIFIER_FIELDS, EntityType


class EntityStore:
    """
    In-memory, thread-safe entity store.
    Production would sit behind the data-access layer instead.
    """

    def __init__(self):
        self._entities: Dict[str, EntityRecord] = {}
        self._lock = threading.Lock()

    def upsert(self, record: EntityRecord) -> None:
        """Insert or replace a record."""
        with self._lock:
            self._entities[record.entity_id] = record

    def get(self, entity_id: str) -> Optional[EntityRecord]:
        with self._lock:
            return self._entities.get(entity_id)

    def remove(self, entity_id: str) -> bool:
        with self._lock:
            return self._entities.pop(entity_id, None) is not None

    def list(
        self, user_id: str, entity_type: Optional[EntityType] = None
    ) -> List[EntityRecord]:
        """A user's records, oldest first."""
        with self._lock:
            records = [
                r for r in self._entities.values()
                if r.user_id == user_id
                and (entity_type is None or r.entity_type == entity_type)
            ]
        return sorted(records, key=lambda r: r.created_at)

    def find_by_name(
        self, user_id: str, entity_type: EntityType, name: str
    ) -> Optional[EntityRecord]:
        """Case-insensitive look-up by identifier."""
        wanted = name.strip().lower()
        for record in self.list(user_id, entity_type):
            if record.name.lower() == wanted:
                return record
        return None

    def names_by_type(self, user_id: str) -> Dict[EntityType, List[str]]:
        """Catalog of a user's named entities, for the parser."""
        catalog: Dict[EntityType, List[str]] = {}
        for record in self.list(user_id):
            if IDENTIFIER_FIELDS.get(record.entity_type) is None:
                continue
            catalog.setdefault(record.entity_type, []).append(record.name)
        return catalog

    def snapshot(self) -> dict:
        """Serializable view of every record."""
        with self._lock:
            return {
                entity_id: record.model_dump(mode="json")
                for entity_id, record in self._entities.items()
            }
