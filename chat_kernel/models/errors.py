"""Chat Entity Error — the typed failure carried in every unsuccessful response."""

from datetime import datetime
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel


class ErrorType(str, Enum):
    PARSING = "Parsing"
    VALIDATION = "Validation"
    SERVICE = "Service"
    TIMEOUT = "Timeout"
    DISAMBIGUATION = "Disambiguation"


class ErrorSeverity(str, Enum):
    LOW = "low"             # User can continue with a minor adjustment
    MEDIUM = "medium"       # Requires the user to rephrase
    HIGH = "high"           # Operation blocked by a backing service
    CRITICAL = "critical"   # Kernel-level fault


class ChatEntityError(BaseModel):
    """Produced only by the ErrorClassifier."""

    type: ErrorType
    severity: ErrorSeverity
    message: str
    retryable: bool
    suggestions: List[str] = []
    code: str = ""                          # e.g. "PARSE_001"
    details: dict = {}


class ErrorCodeCount(BaseModel):
    code: str
    count: int


class UserErrorPattern(BaseModel):
    user_id: str
    error_count: int                        # Within the retention window
    last_error_at: datetime


class ErrorAnalytics(BaseModel):
    """Error totals for monitoring, by type, by code and by user."""

    total_errors: int
    errors_by_type: Dict[ErrorType, int]
    top_error_codes: List[ErrorCodeCount] = []
    user_error_patterns: List[UserErrorPattern] = []
