"""Entity Record — one habit, goal, journal entry, etc. held for a user."""

from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel

from chat_kernel.models.operation import EntityType


class EntityRecord(BaseModel):
    entity_id: str
    user_id: str
    entity_type: EntityType
    name: str                                   # Identifier-field value, or a generated label
    properties: Dict[str, Any] = {}
    completed: bool = False
    completions: List[datetime] = []            # Habit/routine check-offs
    created_at: datetime
    last_updated: datetime
