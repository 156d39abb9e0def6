"""Application configuration using pydantic-settings."""

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CMA_ANALYST_",
        extra="ignore",
    )

    # Anthropic API (optional, enables AI location/condition analysis and summaries)
    anthropic_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Anthropic API key for AI analysis and narrative summaries",
    )
    anthropic_model: str = Field(
        default="claude-sonnet-4-5-20250929",
        description="Model used for structured AI analysis",
    )

    # Tavily web search (optional, enables bonus research queries)
    tavily_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Tavily API key for web research",
    )

    # Pipeline
    step_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        le=900,
        description="Deadline applied to each pipeline step",
    )
    enable_bonus_research: bool = Field(
        default=True,
        description="Run extra web research queries for high-quality analyses",
    )

    # Session store
    session_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="How long a session stays pollable after its last update",
    )
    session_max_entries: int = Field(
        default=1000,
        ge=1,
        description="Maximum sessions kept in memory before LRU eviction",
    )

    # Progressive deepening history
    deepening_database_path: str = Field(default="data/deepening.db")

    # Web service
    web_port: int = Field(default=8000, description="Web server port")
    web_host: str = Field(default="0.0.0.0", description="Web server host")
    json_logs: bool = Field(default=False, description="Emit JSON logs instead of console output")

    @property
    def ai_enabled(self) -> bool:
        return bool(self.anthropic_api_key.get_secret_value())

    @property
    def search_enabled(self) -> bool:
        return bool(self.tavily_api_key.get_secret_value())
