"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins over the POSTGRES_* parts when set (e.g. sqlite:// for local runs)
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="team_coach")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)
    API_RELOAD: bool = Field(default=False)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Completion service (Gemini)
    GOOGLE_AI_API_KEY: Optional[str] = Field(default=None)
    CHAT_COMPLETION_MODEL: str = Field(default="gemini-2.5-flash")
    # Per-call upper bound; a timeout is surfaced to the client as retryable
    CHAT_COMPLETION_TIMEOUT_S: float = Field(default=60.0, gt=0)
    CHAT_COMPLETION_TEMPERATURE: float = Field(default=0.7, ge=0.0, le=2.0)
    CHAT_MAX_OUTPUT_TOKENS: int = Field(default=3000)

    # Chat routing
    CHAT_HISTORY_LIMIT: int = Field(default=15, ge=1, le=100)
    # How long a second message on the same thread waits for the first turn to finish
    CHAT_TURN_LOCK_TIMEOUT_S: float = Field(default=5.0, gt=0)
    # Optional JSON file overriding individual keyword lexicons (loaded once at start-up)
    CHAT_LEXICONS_PATH: Optional[str] = Field(default=None)

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)


# Global settings instance
settings = Settings()
