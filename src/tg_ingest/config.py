"""Configuration management for the ingestion bot."""

from functools import lru_cache
from typing import Any, Literal
from urllib.parse import urlsplit

from pydantic import Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tg_ingest.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Telegram
    telegram_bot_token: SecretStr = Field(description="Telegram bot token from @BotFather")

    # PostgreSQL (pgvector enabled)
    postgres_dsn: SecretStr = Field(description="PostgreSQL connection string")

    # Embeddings (both optional, OpenAI takes priority)
    openai_api_key: SecretStr | None = Field(
        default=None, description="OpenAI API key for embeddings"
    )
    openai_embedding_model: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    openai_chat_model: str = Field(
        default="gpt-4", description="OpenAI chat model used by /ask"
    )
    gemini_api_key: SecretStr | None = Field(
        default=None, description="Gemini API key for embeddings"
    )
    gemini_embedding_model: str = Field(
        default="models/embedding-001", description="Gemini embedding model"
    )

    # Transport
    bot_mode: Literal["polling", "webhook"] = Field(
        default="polling", description="How updates are delivered to the bot"
    )
    webhook_url: str | None = Field(default=None, description="Public webhook URL")
    webhook_secret: SecretStr | None = Field(
        default=None, description="Secret token Telegram sends with webhook requests"
    )
    port: int = Field(default=3000, description="Port for the webhook server")

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("openai_api_key", "gemini_api_key", "webhook_secret", mode="before")
    @classmethod
    def _blank_as_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("telegram_bot_token", "postgres_dsn")
    @classmethod
    def _require_value(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value().strip():
            raise ValueError("must not be empty")
        return value

    @model_validator(mode="after")
    def _check_webhook(self) -> "Settings":
        if self.bot_mode == "webhook" and not self.webhook_url:
            raise ValueError("Webhook mode requires WEBHOOK_URL")
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def has_embedding_credentials(self) -> bool:
        """Check whether any embedding provider key is configured."""
        return bool(self.openai_api_key or self.gemini_api_key)


def load_settings() -> Settings:
    """Build settings, turning validation failures into ConfigurationError."""
    try:
        return Settings()
    except ValidationError as exc:
        fields = sorted(
            {str(err["loc"][0]).upper() for err in exc.errors() if err.get("loc")}
        )
        detail = ", ".join(fields) if fields else str(exc)
        raise ConfigurationError(f"Invalid or missing configuration: {detail}") from exc


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()


def masked_config(settings: Settings) -> dict[str, Any]:
    """Return a view of the configuration that is safe to log."""
    dsn = urlsplit(settings.postgres_dsn.get_secret_value())
    return {
        "mode": settings.bot_mode,
        "port": settings.port,
        "database_host": dsn.hostname or "unknown",
        "embeddings": {
            "openai": settings.openai_api_key is not None,
            "gemini": settings.gemini_api_key is not None,
        },
        "webhook": settings.webhook_url if settings.bot_mode == "webhook" else "N/A",
    }
