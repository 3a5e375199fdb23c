"""Configuration management for Tutor Stream."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Completion service (Anthropic). Validated per turn, not at startup, so a
    # misconfigured key surfaces as a terminal stream error instead of a crash.
    ANTHROPIC_API_KEY: str = Field(default="", description="Anthropic API key")
    CHAT_MODEL: str = Field(
        default="claude-3-5-haiku-20241022", description="Model for streamed tutoring turns"
    )
    FALLBACK_MODEL: str = Field(
        default="claude-3-5-haiku-20241022",
        description="Model for minimized and single-shot retries",
    )
    CHAT_RESPONSE_BUFFER: int = Field(default=800, description="Max output tokens per turn")
    MINIMAL_RESPONSE_BUFFER: int = Field(
        default=300, description="Max output tokens for minimized-payload retries"
    )
    CHAT_TEMPERATURE: float = Field(default=0.7, description="Sampling temperature")

    # Environment
    TUTOR_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Channel lifecycle
    HEARTBEAT_INTERVAL_SECONDS: float = Field(default=5.0, description="Heartbeat cadence")
    STREAM_TIMEOUT_SECONDS: float = Field(default=60.0, description="Hard per-turn timeout")
    COMPLETION_REQUEST_TIMEOUT_SECONDS: float = Field(
        default=15.0, description="Time allowed for the completion service to start streaming"
    )
    MAX_COMPLETION_RETRIES: int = Field(
        default=1, description="Automatic retries for transient completion faults"
    )
    RETRY_BACKOFF_BASE_SECONDS: float = Field(default=1.0, description="Backoff base delay")
    RETRY_BACKOFF_CAP_SECONDS: float = Field(default=30.0, description="Backoff ceiling")

    # Directive extraction
    ROLLING_BUFFER_CHARS: int = Field(default=3000, description="Rolling parse window ceiling")
    PAGE_WIDTH: float = Field(default=612.0, description="Default page width in points")
    PAGE_HEIGHT: float = Field(default=792.0, description="Default page height in points")

    # Inbound payload caps
    MAX_CURRENT_PAGE_CHARS: int = Field(default=5000, description="Current page text cap")
    MAX_NEIGHBOR_PAGE_CHARS: int = Field(default=300, description="Neighbor page text cap")
    MAX_HISTORY_MESSAGES: int = Field(default=6, description="Recent messages sent to the model")
    MAX_MESSAGE_CHARS: int = Field(default=1200, description="Per-message character cap")
    PAYLOAD_TTL_SECONDS: float = Field(
        default=120.0, description="Lifetime of prepared stream payloads"
    )

    # Rate limiting
    TUTOR_REQUESTS_PER_MINUTE: int = Field(default=10, description="Sustained turn rate per user")
    TUTOR_BURST_SIZE: int = Field(default=15, description="Burst size per user")

    # Persistence (optional; falls back to in-memory store when unset)
    SUPABASE_URL: str | None = Field(default=None, description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str | None = Field(
        default=None, description="Supabase service role key"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If environment variables are malformed
    """
    return Settings()
