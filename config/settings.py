"""
Configuration settings for the story context engine.
Uses Pydantic Settings for type-safe configuration with validation.

Settings are only read when building service configs (see config/retrieval.py);
the retrieval and memory services themselves never touch this module.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Pydantic validates types and provides clear error messages for misconfigurations.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra env vars
    )

    # Database
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./story.db",
        description="Async SQLAlchemy database URL for entries, chapters and activations",
    )

    # Application
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    LOG_JSON: bool = Field(
        default=False,
        description="Render logs as JSON lines instead of console output",
    )

    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )

    # Models - one setting per judge purpose, all configurable from .env

    MODEL_ENTRY_SELECTION: str = Field(
        default="x-ai/grok-4.1-fast",
        description="Model for Tier 3 lorebook entry selection",
    )
    MODEL_MEMORY: str = Field(
        default="x-ai/grok-4.1-fast",
        description="Model for chapter analysis, summarization and retrieval decisions",
    )

    ENTRY_SELECTION_TEMPERATURE: float = Field(default=0.2, ge=0.0, le=2.0)
    ENTRY_SELECTION_MAX_TOKENS: int = Field(default=300, ge=16)
    MEMORY_TEMPERATURE: float = Field(default=0.3, ge=0.0, le=2.0)
    MEMORY_MAX_TOKENS: int = Field(default=8192, ge=16)

    # ==================== Entry Retrieval Configuration ====================

    ENTRY_RETRIEVAL_ENABLE_LLM: bool = Field(
        default=True,
        description="Enable Tier 3 judge selection for entries no keyword matched",
    )
    ENTRY_RETRIEVAL_MAX_TIER3: int = Field(
        default=0,
        description="Maximum entries kept from Tier 3 (0 = unlimited)",
        ge=0,
    )
    ENTRY_RETRIEVAL_MAX_WORDS: int = Field(
        default=0,
        description="Maximum words per entry description in the context block (0 = unlimited)",
        ge=0,
        le=500,
    )
    ENTRY_RETRIEVAL_RECENT_COUNT: int = Field(
        default=5,
        description="Number of recent transcript entries searched for keywords",
        ge=0,
    )

    # ==================== Chapter Memory Configuration ====================

    MEMORY_TOKEN_THRESHOLD: int = Field(
        default=24000,
        description="Tokens outside the buffer required before a chapter is cut",
        ge=1,
    )
    MEMORY_CHAPTER_BUFFER: int = Field(
        default=10,
        description="Number of most recent transcript entries never folded into a chapter",
        ge=0,
    )
    MEMORY_AUTO_SUMMARIZE: bool = Field(
        default=True,
        description="Create chapters automatically when the token threshold is crossed",
    )
    MEMORY_ENABLE_RETRIEVAL: bool = Field(
        default=True,
        description="Ask the judge which past chapters to recall each turn",
    )
    MEMORY_MAX_CHAPTERS_PER_RETRIEVAL: int = Field(
        default=3,
        description="Maximum chapters recalled per turn",
        ge=1,
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure database URL uses an async driver."""
        if not v.startswith(("sqlite+aiosqlite://", "postgresql+asyncpg://", "postgresql://")):
            raise ValueError(
                "DATABASE_URL must start with sqlite+aiosqlite://, postgresql+asyncpg:// or postgresql://"
            )
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT == "development"


# Create singleton instance with validation
# This will automatically load from .env and validate all fields
settings = Settings()
