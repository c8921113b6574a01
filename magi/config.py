"""Configuration settings for the MAGI deliberation engine."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Provider API keys are deliberately absent: they arrive with each request
    and are threaded through the call chain as explicit parameters.
    """

    # Database
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "magi"
    db_user: str = "magi"
    db_password: str = "magi"

    # Provider endpoints
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    xai_base_url: str = "https://api.x.ai/v1"
    anthropic_version: str = "2023-06-01"
    anthropic_max_tokens: int = 1024
    temperature: float = 0.3

    # Timeouts (seconds)
    provider_timeout: float = 20.0
    relay_timeout: float = 8.0
    live_fetch_timeout: float = 8.0

    # Tool-call loop
    max_tool_calls: int = 5
    max_tool_turns: int = 12

    # HTTP relay / live snapshot limits
    relay_max_response_bytes: int = 256 * 1024
    relay_max_request_bytes: int = 64 * 1024
    live_context_max_chars: int = 12_000

    # Context assembly
    context_char_budget: int = 26_000
    context_max_chunks: int = 1200
    context_priority_chunk_limit: int = 400
    context_general_chunk_limit: int = 200

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_rate_limit_enabled: bool = False
    redis_rate_limit_wait_seconds: int = 60
    redis_events_enabled: bool = False

    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def async_database_url(self) -> str:
        """Async SQLAlchemy database URL."""
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    class Config:
        env_prefix = "MAGI_"
        env_file = ".env"


# Global settings instance
settings = Settings()
