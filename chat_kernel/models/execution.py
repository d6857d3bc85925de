"""Execution results — adapter outcomes and the dispatcher's extended result."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel

from chat_kernel.models.errors import ChatEntityError
from chat_kernel.models.operation import Alternative, ParsedOperation


class OperationResult(BaseModel):
    """What an entity adapter returns for one operation."""

    success: bool
    message: str = ""
    data: Optional[Any] = None
    retryable: Optional[bool] = None        # Adapter's own hint on failure


class ExtendedOperationResult(BaseModel):
    """One per dispatched operation. Not persisted by the kernel."""

    success: bool
    data: Optional[Any] = None
    error: Optional[ChatEntityError] = None
    message: str = ""
    operation_id: str
    timestamp: datetime
    execution_time_ms: float
    context_used: bool = False
    confidence_score: float
    alternatives: List[Alternative] = []
    attempts: int = 0
    degraded: bool = False
    cancelled: bool = False                 # Abandoned before the adapter answered


class DegradedOperation(BaseModel):
    """A write accepted locally under the ``degrade`` fallback strategy."""

    operation_id: str
    user_id: str
    operation: ParsedOperation
    reason: str
    queued_at: datetime
