"""Configuration models for the workflow engine."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DOTENV_LOADED = False


def _load_env_once() -> None:
    """Load environment variables from a .env file exactly once."""

    global _DOTENV_LOADED
    if not _DOTENV_LOADED:
        load_dotenv()
        _DOTENV_LOADED = True


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in configuration data."""

    if isinstance(data, str):
        return os.path.expandvars(data)
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    return data


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    log_file: str | None = Field(default=None, description="Log file path")
    max_bytes: int = Field(default=10485760, description="Max log file size (10MB)")
    backup_count: int = Field(default=5, description="Number of backup files")

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError(f"Unknown log level: {value}")
        return value


class SchedulerConfig(BaseModel):
    """Configuration for the APScheduler job scheduler."""

    enabled: bool = Field(default=True, description="Enable scheduler")
    timezone: str = Field(default="UTC", description="Default timezone for cron triggers")
    max_workers: int = Field(default=10, description="Maximum thread pool workers")
    job_coalesce: bool = Field(default=True, description="Combine missed job runs")
    max_instances: int = Field(default=1, description="Max concurrent instances per job")
    misfire_grace_time: int = Field(default=60, description="Grace time for missed jobs (seconds)")

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_workers must be at least 1")
        return value

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value


class ExecutionConfig(BaseModel):
    """Configuration for the execution queue and worker pool."""

    workers: int = Field(default=4, ge=1, description="Number of concurrent execution workers")
    poll_interval: float = Field(
        default=0.5, gt=0.0, description="Seconds a worker waits on an empty queue"
    )
    queue_maxsize: int = Field(
        default=1000, ge=0, description="Maximum queued executions (0 for unbounded)"
    )
    threshold_poll_seconds: int = Field(
        default=300, ge=1, description="Polling interval for threshold triggers"
    )


class HTTPClientConfig(BaseModel):
    """Configuration for outbound HTTP calls made by actions."""

    timeout: float = Field(default=10.0, gt=0.0, description="Per-request timeout in seconds")
    user_agent: str = Field(default="store-workflows", description="User-Agent header value")


class PersistenceConfig(BaseModel):
    """Configuration for workflow and execution storage."""

    db_path: str | None = Field(
        default=None, description="Path to SQLite database file (None for in-memory)"
    )
    max_executions_per_workflow: int = Field(
        default=1000, ge=1, description="Execution records kept per workflow"
    )


class IntegrationConfig(BaseModel):
    """Default endpoints for chat integrations."""

    slack_webhook_url: str | None = Field(default=None, description="Slack incoming webhook URL")
    discord_webhook_url: str | None = Field(
        default=None, description="Discord incoming webhook URL"
    )


class ExportConfig(BaseModel):
    """Configuration for data export actions."""

    directory: str = Field(default="exports", description="Directory for exported files")


class ServerConfig(BaseModel):
    """Configuration for the inbound event HTTP server."""

    enabled: bool = Field(default=True, description="Serve the inbound event API")
    host: str = Field(default="127.0.0.1", description="Bind host")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")


class EngineSettings(BaseSettings):
    """Main configuration for the workflow engine."""

    model_config = SettingsConfigDict(
        env_prefix="STORE_WORKFLOWS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    engine: ExecutionConfig = Field(default_factory=ExecutionConfig)
    http: HTTPClientConfig = Field(default_factory=HTTPClientConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    integrations: IntegrationConfig = Field(default_factory=IntegrationConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    allow_custom_scripts: bool = Field(
        default=False,
        description="Allow inline scripts in custom actions (trusted deployments only)",
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineSettings:
        """Load configuration from a YAML file."""

        _load_env_once()
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as handle:
            try:
                config_data = yaml.safe_load(handle)
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid YAML in config file: {exc}") from exc

        if not config_data:
            config_data = {}

        config_data = _expand_env_vars(config_data)
        return cls(**config_data)


__all__ = [
    "EngineSettings",
    "ExecutionConfig",
    "ExportConfig",
    "HTTPClientConfig",
    "IntegrationConfig",
    "LoggingConfig",
    "PersistenceConfig",
    "SchedulerConfig",
    "ServerConfig",
]
