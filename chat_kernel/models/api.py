"""Request/response envelopes for the kernel's public entry point."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from chat_kernel.models.errors import ChatEntityError
from chat_kernel.models.execution import ExtendedOperationResult
from chat_kernel.models.operation import ParsedOperation


class ParsingOptions(BaseModel):
    use_context: bool = True


class ChatEntityRequest(BaseModel):
    message: str
    user_id: str
    session_id: Optional[str] = None
    options: ParsingOptions = ParsingOptions()


class DisambiguationOption(BaseModel):
    """A numbered choice shown to the user. Labels carry no internal ids."""

    index: int = Field(ge=1)
    label: str
    confidence: float


class ResponseMetadata(BaseModel):
    request_id: str
    timestamp: datetime
    processing_time_ms: float
    confidence_score: Optional[float] = None


class ChatEntityResponse(BaseModel):
    success: bool
    operation: Optional[ParsedOperation] = None
    result: Optional[ExtendedOperationResult] = None
    error: Optional[ChatEntityError] = None
    suggestions: List[str] = []
    needs_disambiguation: bool = False
    disambiguation_options: List[DisambiguationOption] = []
    metadata: ResponseMetadata


class BatchItem(BaseModel):
    id: str
    request: ChatEntityRequest


class BatchResult(BaseModel):
    id: str
    response: ChatEntityResponse


class BatchSummary(BaseModel):
    total_requests: int
    successful_requests: int
    average_processing_time_ms: float
    average_confidence: float


class BatchResponse(BaseModel):
    results: List[BatchResult]
    summary: BatchSummary
