"""Configuration management for taskroster."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite Configuration
    sqlite_db_path: str = Field(default="data/taskroster.db", description="Path to the SQLite document store")
    sqlite_busy_timeout_seconds: float = Field(
        default=5.0, description="Seconds to wait for the SQLite write lock before failing"
    )

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")
    logfire_environment: str = Field(default="production", description="Environment name reported to Logfire")

    # Relationship Configuration
    recompute_pending_tasks: bool = Field(
        default=True,
        description=(
            "Rebuild a user's pending tasks from task records after an update "
            "instead of storing the client-supplied list verbatim"
        ),
    )


# Application Constants
class Constants:
    """Application-wide constants."""

    # Collections
    TASKS_COLLECTION: str = "tasks"
    USERS_COLLECTION: str = "users"

    # Pagination Defaults
    DEFAULT_TASK_LIST_LIMIT: int = 100  # Users have no default limit

    # Denormalized owner name for tasks without an owner
    UNASSIGNED_USER_NAME: str = "unassigned"


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
