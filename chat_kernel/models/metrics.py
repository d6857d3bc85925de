"""Performance metrics and derived health status."""

from enum import Enum

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class PerformanceMetrics(BaseModel):
    total_operations: int = 0
    successful_operations: int = 0
    messages_processed: int = 0
    average_parsing_time: float = 0.0       # ms, rolling window
    average_execution_time: float = 0.0     # ms, rolling window
    average_response_time: float = 0.0      # ms, rolling window
    average_confidence: float = 0.0         # rolling window
    error_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    disambiguation_rate: float = Field(default=0.0, ge=0.0, le=1.0)


class HealthReport(BaseModel):
    status: HealthStatus
    details: dict = {}
