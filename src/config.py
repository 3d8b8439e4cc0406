"""Application settings loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Azure OpenAI settings
    azure_openai_endpoint: str = Field(..., description="Azure OpenAI endpoint URL")
    azure_openai_api_key: str | None = Field(
        default=None,
        description="Azure OpenAI API key (uses DefaultAzureCredential if not set)",
    )
    azure_openai_api_version: str = Field(
        default="2024-06-01", description="Azure OpenAI API version"
    )
    azure_openai_chat_deployment: str = Field(
        default="gpt-4o", description="Chat model deployment name"
    )
    azure_openai_model: str = Field(
        default="gpt-4o", description="Underlying model name (used for token counting)"
    )
    temperature: float = Field(default=0.0, description="Response temperature")

    # Chat history settings
    history_backend: Literal["memory", "cosmos"] = Field(
        default="memory", description="Where chat history is kept"
    )
    max_chat_history_items: int = Field(
        default=5, description="Number of recent turns sent to the model"
    )
    cosmos_db_endpoint: str | None = Field(
        default=None, description="Cosmos DB endpoint URL (cosmos history backend)"
    )
    cosmos_db_database: str = Field(
        default="azure-sidekick", description="Cosmos DB database name"
    )
    cosmos_db_container: str = Field(
        default="chat-history", description="Cosmos DB container name"
    )

    # Logging settings
    log_level: str = Field(default="WARNING", description="Console log level")
    log_directory: str | None = Field(
        default=None, description="Directory for dated operation log files"
    )
    applicationinsights_connection_string: str | None = Field(
        default=None,
        description="Application Insights connection string for telemetry",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
