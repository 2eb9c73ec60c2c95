"""Configuration for docmapper.

All values can be overridden with ``DOCMAPPER_``-prefixed environment
variables or a ``.env`` file.

Environment Variables:
    DOCMAPPER_DATABASE_URL: Storage backend URL (default: memory://)
                            Examples:
                            - memory://
                            - sqlite:///./docmapper.db
                            - sqlite+aiosqlite:///:memory:
    DOCMAPPER_LOG_LEVEL: Logging level (default: INFO)
    DOCMAPPER_LOG_FORMAT: "console" or "json" (default: console)
    DOCMAPPER_SQL_ECHO: Echo SQL emitted by the SQLite backend (default: false)
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from the environment."""

    model_config = SettingsConfigDict(
        env_prefix="DOCMAPPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = "memory://"
    log_level: str = "INFO"
    log_format: str = "console"
    sql_echo: bool = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
