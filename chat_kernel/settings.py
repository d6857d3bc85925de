"""Environment-driven settings for the chat entity kernel service."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from chat_kernel.models.config import (
    ChatEntityConfig,
    ContextConfig,
    DisambiguationConfig,
    ErrorHandlingConfig,
    default_integrations,
)


class Settings(BaseSettings):
    """Read from CHAT_KERNEL_* environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_prefix="CHAT_KERNEL_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "INFO"
    confidence_threshold: float = 0.75
    session_timeout_seconds: float = 30 * 60
    default_timeout_ms: int = 5000
    escalation_threshold: int = 5

    def to_config(self) -> ChatEntityConfig:
        integrations = {
            entity_type: integration.model_copy(
                update={"timeout_ms": self.default_timeout_ms}
            )
            for entity_type, integration in default_integrations().items()
        }
        return ChatEntityConfig(
            disambiguation=DisambiguationConfig(
                confidence_threshold=self.confidence_threshold
            ),
            context=ContextConfig(session_timeout_seconds=self.session_timeout_seconds),
            error_handling=ErrorHandlingConfig(
                escalation_threshold=self.escalation_threshold
            ),
            integrations=integrations,
        )
