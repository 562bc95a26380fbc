"""Configuration settings for the Archidesk backend."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Supabase
    supabase_url: str
    supabase_secret_key: str | None = None  # Backend/admin access
    supabase_service_role_key: str | None = None  # Legacy name for the same key

    # JWT
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7  # 1 week

    # LLM providers
    llm_provider: str | None = None  # "anthropic" | "openai"; autodetected from keys when unset
    chat_model: str | None = None
    analyzer_model: str | None = None  # Cheap model used for preference extraction
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None

    # Memory
    memory_max_tokens: int = 1500
    memory_analysis_enabled: bool = True

    # App
    debug: bool = False
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars not in model
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
