"""Chat Entity Kernel data models."""

from chat_kernel.models.api import (
    BatchItem,
    BatchResponse,
    BatchResult,
    BatchSummary,
    ChatEntityRequest,
    ChatEntityResponse,
    DisambiguationOption,
    ParsingOptions,
    ResponseMetadata,
)
from chat_kernel.models.config import (
    ChatEntityConfig,
    ContextConfig,
    DisambiguationConfig,
    ErrorHandlingConfig,
    ExecutionConfig,
    FallbackStrategy,
    HealthThresholds,
    MonitoringConfig,
    ParserConfig,
    ServiceIntegrationConfig,
)
from chat_kernel.models.context import (
    ContextualSuggestion,
    ConversationContext,
    DisambiguationState,
    HistoryEntry,
    IntentPrediction,
    SuggestionKind,
)
from chat_kernel.models.entity import EntityRecord
from chat_kernel.models.errors import (
    ChatEntityError,
    ErrorAnalytics,
    ErrorCodeCount,
    ErrorSeverity,
    ErrorType,
    UserErrorPattern,
)
from chat_kernel.models.execution import (
    DegradedOperation,
    ExtendedOperationResult,
    OperationResult,
)
from chat_kernel.models.metrics import HealthReport, HealthStatus, PerformanceMetrics
from chat_kernel.models.operation import (
    Alternative,
    EntityType,
    OperationCandidate,
    OperationType,
    ParsedOperation,
)

__all__ = [
    "Alternative",
    "BatchItem",
    "BatchResponse",
    "BatchResult",
    "BatchSummary",
    "ChatEntityConfig",
    "ChatEntityError",
    "ChatEntityRequest",
    "ChatEntityResponse",
    "ContextConfig",
    "ContextualSuggestion",
    "ConversationContext",
    "DegradedOperation",
    "DisambiguationConfig",
    "DisambiguationOption",
    "DisambiguationState",
    "EntityRecord",
    "EntityType",
    "ErrorAnalytics",
    "ErrorCodeCount",
    "ErrorHandlingConfig",
    "ErrorSeverity",
    "ErrorType",
    "ExecutionConfig",
    "ExtendedOperationResult",
    "FallbackStrategy",
    "HealthReport",
    "HealthStatus",
    "HealthThresholds",
    "HistoryEntry",
    "IntentPrediction",
    "MonitoringConfig",
    "OperationCandidate",
    "OperationResult",
    "OperationType",
    "ParsedOperation",
    "ParserConfig",
    "ParsingOptions",
    "PerformanceMetrics",
    "ResponseMetadata",
    "ServiceIntegrationConfig",
    "SuggestionKind",
    "UserErrorPattern",
]
