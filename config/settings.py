"""
Settings Module for Liveness Sweep

Configuration management using Pydantic Settings.
Supports environment variables, .env files, and runtime configuration.
Includes validation, type checking, and sensible defaults.
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
from enum import Enum

from pydantic import (
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment enumeration."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseType(str, Enum):
    """Supported database types."""
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"


class BaseSettingsConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True
    )


class DatabaseSettings(BaseSettingsConfig):
    """
    Database Configuration Settings

    The registry lives in PostgreSQL in production and in SQLite for
    development and tests.
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        extra="ignore"
    )

    type: DatabaseType = Field(
        default=DatabaseType.SQLITE,
        description="Database type: postgresql or sqlite"
    )

    # PostgreSQL settings
    host: str = Field(
        default="localhost",
        description="Database host address"
    )
    port: int = Field(
        default=5432,
        ge=1,
        le=65535,
        description="Database port number"
    )
    name: str = Field(
        default="liveness",
        min_length=1,
        max_length=64,
        description="Database name"
    )
    user: str = Field(
        default="postgres",
        min_length=1,
        max_length=64,
        description="Database username"
    )
    password: SecretStr = Field(
        default=SecretStr(""),
        description="Database password"
    )

    # SQLite settings
    sqlite_path: Path = Field(
        default=Path("data/liveness.db"),
        description="Path to SQLite database file"
    )

    # Connection pool settings
    pool_size: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Connection pool size"
    )
    max_overflow: int = Field(
        default=20,
        ge=0,
        le=100,
        description="Maximum overflow connections"
    )
    pool_timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Pool connection timeout in seconds"
    )
    pool_recycle: int = Field(
        default=1800,
        ge=60,
        le=7200,
        description="Connection recycle time in seconds"
    )

    echo: bool = Field(
        default=False,
        description="Echo SQL queries (debug mode)"
    )

    @property
    def url(self) -> str:
        """Generate database URL based on configuration."""
        if self.type == DatabaseType.SQLITE:
            self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
            return f"sqlite+aiosqlite:///{self.sqlite_path}"

        elif self.type == DatabaseType.POSTGRESQL:
            password = self.password.get_secret_value()
            return (
                f"postgresql+asyncpg://{self.user}:{password}"
                f"@{self.host}:{self.port}/{self.name}"
            )

        raise ValueError(f"Unsupported database type: {self.type}")

    @field_validator("sqlite_path")
    @classmethod
    def validate_sqlite_path(cls, v: Path) -> Path:
        """Validate and normalize SQLite path."""
        if not v.suffix:
            v = v.with_suffix(".db")
        return v


class PushSettings(BaseSettingsConfig):
    """
    Push Transport Configuration Settings

    Endpoint and credentials of the HTTP push service used to deliver
    probes and guardian alerts, plus the send pacing applied between
    consecutive messages.
    """

    model_config = SettingsConfigDict(
        env_prefix="PUSH_",
        env_file=".env",
        extra="ignore"
    )

    endpoint: str = Field(
        default="https://fcm.googleapis.com/v1",
        description="Base URL of the push service API"
    )
    project_id: str = Field(
        default="liveness-dev",
        min_length=1,
        description="Project identifier used in the send path"
    )
    access_token: SecretStr = Field(
        default=SecretStr(""),
        description="Bearer token for the push service"
    )
    request_timeout: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="HTTP timeout for a single send in seconds"
    )
    pacing_delay: float = Field(
        default=0.05,
        ge=0,
        le=5,
        description="Minimum spacing between consecutive sends in seconds"
    )

    @property
    def send_url(self) -> str:
        """Full URL of the message send call."""
        return f"{self.endpoint.rstrip('/')}/projects/{self.project_id}/messages:send"


class SweepSettings(BaseSettingsConfig):
    """
    Liveness Sweep Configuration Settings

    Thresholds for the evaluator and the concurrency limits of a sweep.
    All durations are in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="SWEEP_",
        env_file=".env",
        extra="ignore"
    )

    response_timeout: int = Field(
        default=600,  # 10 minutes
        ge=1,
        le=86400,
        description="Time without a valid probe response before a device is non-responsive"
    )
    heartbeat_freshness_window: int = Field(
        default=180,  # 3 minutes
        ge=1,
        le=86400,
        description="How recent a heartbeat must be for the agent to count as running"
    )
    interval: int = Field(
        default=300,  # 5 minutes
        ge=10,
        le=86400,
        description="Seconds between sweep cycles"
    )
    max_concurrency: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Maximum concurrent per-device operations within a phase"
    )
    operation_timeout: float = Field(
        default=15.0,
        gt=0,
        le=300,
        description="Upper bound for a single transport or registry call"
    )

    @model_validator(mode="after")
    def validate_timing(self) -> "SweepSettings":
        """Validate timing relationships."""
        if self.operation_timeout >= self.interval:
            raise ValueError("operation_timeout must be shorter than the sweep interval")
        return self

    @property
    def response_timeout_delta(self) -> timedelta:
        return timedelta(seconds=self.response_timeout)

    @property
    def heartbeat_freshness_delta(self) -> timedelta:
        return timedelta(seconds=self.heartbeat_freshness_window)


class LoggingSettings(BaseSettingsConfig):
    """
    Logging Configuration Settings

    Console and rotating file sinks for loguru.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore"
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Minimum logging level"
    )

    console_enabled: bool = Field(
        default=True,
        description="Enable console logging"
    )
    console_colored: bool = Field(
        default=True,
        description="Enable colored console output"
    )

    file_enabled: bool = Field(
        default=False,
        description="Enable file logging"
    )
    file_path: Path = Field(
        default=Path("logs/liveness.log"),
        description="Log file path"
    )
    file_rotation: str = Field(
        default="10 MB",
        description="Log rotation size (e.g., '10 MB', '1 day')"
    )
    file_retention: str = Field(
        default="30 days",
        description="Log retention period"
    )

    error_file_enabled: bool = Field(
        default=False,
        description="Enable separate error log file"
    )
    error_file_path: Path = Field(
        default=Path("logs/errors.log"),
        description="Error log file path"
    )

    json_enabled: bool = Field(
        default=False,
        description="Serialize file log records as JSON"
    )


class ServerSettings(BaseSettingsConfig):
    """
    HTTP Server Configuration Settings

    The aiohttp server that hosts the report, heartbeat and health
    endpoints.
    """

    model_config = SettingsConfigDict(
        env_prefix="SERVER_",
        env_file=".env",
        extra="ignore"
    )

    enabled: bool = Field(
        default=True,
        description="Start the HTTP server"
    )
    host: str = Field(
        default="0.0.0.0",
        description="Bind address"
    )
    port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Bind port"
    )


class Settings(BaseSettingsConfig):
    """
    Main Settings Class

    Aggregates all settings sections and provides the main
    configuration interface for the application.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    app_name: str = Field(
        default="Liveness Sweep",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )

    # Nested settings
    database: DatabaseSettings = Field(
        default_factory=DatabaseSettings
    )
    push: PushSettings = Field(
        default_factory=PushSettings
    )
    sweep: SweepSettings = Field(
        default_factory=SweepSettings
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings
    )
    server: ServerSettings = Field(
        default_factory=ServerSettings
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    @model_validator(mode="after")
    def configure_for_environment(self) -> "Settings":
        """Apply environment-specific configuration."""
        if self.is_production:
            self.debug = False
            self.database.echo = False

        elif self.is_development and self.debug:
            if self.logging.level == LogLevel.INFO:
                self.logging.level = LogLevel.DEBUG

        return self

    def to_dict(self, *, exclude_secrets: bool = True) -> Dict[str, Any]:
        """Convert settings to dictionary."""
        data = self.model_dump(mode="json")

        if exclude_secrets:
            def remove_secrets(obj: Any) -> Any:
                if isinstance(obj, dict):
                    return {
                        k: remove_secrets(v)
                        for k, v in obj.items()
                        if "password" not in k.lower()
                        and "secret" not in k.lower()
                        and "token" not in k.lower()
                    }
                elif isinstance(obj, list):
                    return [remove_secrets(item) for item in obj]
                return obj

            data = remove_secrets(data)

        return data


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    This function is cached to ensure a single settings instance
    is used throughout the application lifecycle.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
