"""Kernel configuration — loaded once, tunable by operators at runtime."""

from enum import Enum
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field

from chat_kernel.models.operation import EntityType


class FallbackStrategy(str, Enum):
    RETRY = "retry"
    DEGRADE = "degrade"
    FAIL = "fail"


class ServiceIntegrationConfig(BaseModel):
    """Per-entity execution policy. Read-only after startup."""

    model_config = ConfigDict(frozen=True)

    timeout_ms: int = Field(default=5000, gt=0)
    fallback_strategy: FallbackStrategy = FallbackStrategy.RETRY
    max_retries: int = Field(default=2, ge=0)
    retry_backoff_ms: int = Field(default=200, ge=0)


class ParserConfig(BaseModel):
    min_plausibility: float = Field(default=0.35, ge=0.0, le=1.0)
    max_alternatives: int = Field(default=4, ge=0)
    name_match_floor: float = Field(default=0.6, ge=0.0, le=1.0)


class DisambiguationConfig(BaseModel):
    enabled: bool = True
    confidence_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    tie_delta: float = Field(default=0.1, ge=0.0, le=1.0)
    match_floor: float = Field(default=0.5, ge=0.0, le=1.0)


class ContextConfig(BaseModel):
    enabled: bool = True
    max_history_length: int = Field(default=100, ge=1)
    session_timeout_seconds: float = Field(default=30 * 60, gt=0)
    sweep_interval_seconds: float = Field(default=60, gt=0)
    max_suggestions: int = Field(default=5, ge=0)


class ErrorHandlingConfig(BaseModel):
    escalation_threshold: int = Field(default=5, ge=1)
    analytics_retention_seconds: float = Field(default=24 * 60 * 60, gt=0)


class HealthThresholds(BaseModel):
    unhealthy_error_rate: float = 0.2
    unhealthy_confidence: float = 0.5
    unhealthy_response_ms: float = 3000
    degraded_error_rate: float = 0.1
    degraded_confidence: float = 0.7
    degraded_response_ms: float = 2000


class MonitoringConfig(BaseModel):
    enabled: bool = True
    window_size: int = Field(default=100, ge=1)
    thresholds: HealthThresholds = HealthThresholds()


class ExecutionConfig(BaseModel):
    max_workers: int = Field(default=8, ge=1)
    handle_cache_size: int = Field(default=256, ge=1)
    handle_ttl_seconds: float = Field(default=30 * 60, gt=0)


def default_integrations() -> Dict[EntityType, ServiceIntegrationConfig]:
    degrade = ServiceIntegrationConfig(fallback_strategy=FallbackStrategy.DEGRADE)
    retry = ServiceIntegrationConfig(fallback_strategy=FallbackStrategy.RETRY)
    return {
        EntityType.HABIT: retry,
        EntityType.GOAL: retry,
        EntityType.JOURNAL: degrade,
        EntityType.MOOD: degrade,
        EntityType.ROUTINE: retry,
        EntityType.BELIEF: retry,
        EntityType.SYNCHRONICITY: retry,
    }


class ChatEntityConfig(BaseModel):
    """Top-level configuration for the chat entity kernel."""

    parser: ParserConfig = ParserConfig()
    disambiguation: DisambiguationConfig = DisambiguationConfig()
    context: ContextConfig = ContextConfig()
    error_handling: ErrorHandlingConfig = ErrorHandlingConfig()
    monitoring: MonitoringConfig = MonitoringConfig()
    execution: ExecutionConfig = ExecutionConfig()
    integrations: Dict[EntityType, ServiceIntegrationConfig] = Field(
        default_factory=default_integrations
    )

    def integration_for(self, entity_type: EntityType) -> ServiceIntegrationConfig:
        return self.integrations.get(entity_type, ServiceIntegrationConfig())
