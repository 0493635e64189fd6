"""Configuration settings for fetch-swarm."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConnectionConfig(BaseModel):
    """Configuration for a single Connection.

    Controls the admission window, dispatch spacing, per-attempt timeout
    and retry budget. Instances are frozen: a Connection reads its
    configuration once and never sees it change.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    concurrency: int = Field(
        default=2,
        ge=1,
        description="Maximum number of bundles in flight at once",
    )
    min_ms_between_requests: int = Field(
        default=150,
        ge=0,
        description="Minimum milliseconds between dispatch starts (start to start)",
    )
    timeout_ms: int = Field(
        default=0,
        ge=0,
        description="Fail a transport attempt after this many milliseconds (0 = no timeout)",
    )
    retry: int = Field(
        default=0,
        ge=0,
        description="Re-dispatch attempts after a transport failure before surfacing it",
    )

    @property
    def min_interval(self) -> float:
        """Minimum dispatch spacing in seconds."""
        return self.min_ms_between_requests / 1000

    @property
    def timeout(self) -> float | None:
        """Per-attempt timeout in seconds, or None when disabled."""
        if self.timeout_ms == 0:
            return None
        return self.timeout_ms / 1000


class LoggingConfig(BaseModel):
    """Optional file sink for logs; the console sink is always on."""

    log_file: str | None = Field(
        default=None,
        description="Write DEBUG and above to this file as well as the console",
    )
    rotation: str = Field(
        default="10 MB",
        description="loguru rotation policy for the log file",
    )
    retention: str = Field(
        default="7 days",
        description="loguru retention policy for rotated files",
    )
    serialize: bool = Field(
        default=False,
        description="Write the log file as JSON lines",
    )


class Settings(BaseSettings):
    """fetch-swarm settings, read from the environment and an optional .env file.

    Nested models use a double underscore, e.g. CONNECTION__CONCURRENCY=4.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # --------------------------------------------------------------------------
    # Application
    # --------------------------------------------------------------------------
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # --------------------------------------------------------------------------
    # HTTP
    # --------------------------------------------------------------------------
    user_agent: str = Field(
        default="fetch-swarm",
        description="User-Agent header sent by the default httpx transport",
    )

    # --------------------------------------------------------------------------
    # Connection Defaults
    # --------------------------------------------------------------------------
    connection: ConnectionConfig = Field(
        default_factory=ConnectionConfig,
        description="Default configuration for new connections",
    )

    # --------------------------------------------------------------------------
    # Logging
    # --------------------------------------------------------------------------
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="File logging options",
    )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first use."""
    return Settings()
