"""
Application settings and configuration management.

Thresholds and weights for the grounding pipeline live in
grounding_policy.yaml; this module holds the environment-level settings.
"""
from typing import Literal
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Configuration
    api_host: str = Field(default="0.0.0.0", description="Server host")
    api_port: int = Field(default=8000, description="Server port")
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    log_level: str = Field(default="INFO", description="Log level")
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")

    # OpenRouter API
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1", description="OpenRouter API base URL"
    )
    llm_model: str = Field(
        default="anthropic/claude-sonnet-4", description="Vision model used by the orchestrator"
    )
    llm_timeout: float = Field(default=60.0, description="LLM request timeout in seconds")
    llm_max_tokens: int = Field(default=2048, description="Max tokens per LLM response")
    llm_temperature: float = Field(default=0.3, description="LLM sampling temperature")

    # Grounding policy
    grounding_config_path: str = Field(
        default="config/grounding_policy.yaml", description="Path to the grounding policy YAML"
    )

    # Context store
    similarity_backend: Literal["memory", "pgvector", "none"] = Field(
        default="memory", description="Similarity backend for tool executions"
    )
    database_url: str = Field(default="", description="PostgreSQL URL for the pgvector backend")
    context_retention: int = Field(
        default=100, description="Number of conversations kept in memory"
    )

    # Image loading
    image_fetch_timeout: float = Field(default=30.0, description="Image download timeout in seconds")

    # Monitoring
    enable_metrics: bool = Field(default=True, description="Enable Prometheus metrics")
    enable_structured_logging: bool = Field(
        default=True, description="Enable structured JSON logging"
    )


# Global settings instance
settings = Settings()
