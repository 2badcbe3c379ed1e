"""Configuration management for the workflow automation engine.

This module provides configuration models and loading functionality using Pydantic
for validation and type safety. Workflow definitions are declared here as well so
they can be loaded from the same YAML/JSON files as the engine settings.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DOTENV_LOADED = False

TriggerTypeName = Literal["schedule", "event", "webhook", "api", "condition", "manual"]


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


# ----------------------------------------------------------------------
# Workflow definitions
# ----------------------------------------------------------------------
class ConditionSpec(BaseModel):
    """Condition gating whether a workflow fires for a payload."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    field: str = Field(..., description="Dot-separated path to a value inside the payload")
    operator: str = Field(
        ..., alias="op", description="Comparison operator (equals, greater_than, ...)"
    )
    value: Any = Field(default=None, description="Value compared against the payload field")


class ActionSpec(BaseModel):
    """One declared step of a workflow."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., min_length=1, description="Action type identifier")
    config: dict[str, Any] = Field(
        default_factory=dict, description="Free-form action configuration"
    )


class WorkflowDefinition(BaseModel):
    """Stored workflow: trigger, ordered actions, conditions and fail-fast policy."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Workflow identifier")
    scope_id: str | None = Field(default=None, description="Owning scope (company/tenant) id")
    name: str = Field(default="", description="Human-readable workflow name")
    description: str = Field(default="", description="Workflow description")
    category: str = Field(default="custom", description="Workflow category")
    trigger_type: TriggerTypeName = Field(default="manual", description="Trigger category")
    trigger_config: dict[str, Any] = Field(
        default_factory=dict, description="Trigger-specific settings"
    )
    actions: list[ActionSpec] = Field(..., description="Actions executed in declared order")
    conditions: list[ConditionSpec] = Field(
        default_factory=list, description="Conditions combined with AND"
    )
    fail_fast: bool = Field(default=False, description="Stop at the first failed action")
    ai_model: str = Field(default="auto", description="Model used by ai_analysis actions")
    is_active: bool = Field(default=True, description="Whether the workflow may run")

    @field_validator("id", "scope_id", mode="before")
    @classmethod
    def coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @model_validator(mode="after")
    def ensure_actions(self) -> WorkflowDefinition:
        if not self.actions:
            raise ValueError("Workflow must define at least one action")
        return self


# ----------------------------------------------------------------------
# Engine settings
# ----------------------------------------------------------------------
class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    log_file: str | None = Field(default=None, description="Log file path")
    max_bytes: int = Field(default=10485760, description="Max log file size (10MB)")
    backup_count: int = Field(default=5, description="Number of backup files")

    @field_validator("level", mode="before")
    @classmethod
    def normalise_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value


class HTTPClientConfig(BaseModel):
    """Default HTTP client configuration for outbound api_call actions."""

    timeout: float = Field(default=10.0, gt=0.0, description="Default HTTP timeout in seconds")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Headers added to every outbound request"
    )
    verify: bool = Field(default=True, description="Verify TLS certificates")
    follow_redirects: bool = Field(default=False, description="Follow HTTP redirects")


class StorageConfig(BaseModel):
    """Where execution records are persisted."""

    backend: Literal["memory", "sql"] = Field(default="memory", description="Recorder backend")
    db_url: str | None = Field(
        default=None, description="SQLAlchemy database URL (sql backend only)"
    )
    echo: bool = Field(default=False, description="Enable SQL statement logging")

    @model_validator(mode="after")
    def ensure_url(self) -> StorageConfig:
        if self.backend == "sql" and not self.db_url:
            raise ValueError("sql storage backend requires db_url")
        return self


class ExecutionConfig(BaseModel):
    """Per-run execution settings."""

    default_timeout: float | None = Field(
        default=None,
        gt=0.0,
        description="Deadline in seconds applied to runs without an explicit timeout",
    )
    incremental_persistence: bool = Field(
        default=True, description="Append each action outcome to the record as it completes"
    )


class ConcurrencyConfig(BaseModel):
    """Policy for concurrent runs of the same workflow."""

    per_workflow_limit: int | None = Field(
        default=None,
        ge=1,
        description="Maximum concurrent runs per workflow (None disables the limit)",
    )
    acquire_timeout: float | None = Field(
        default=None,
        ge=0.0,
        description="Seconds to wait for a free slot (None waits indefinitely)",
    )


class SMTPConfig(BaseModel):
    """SMTP settings for send_email actions."""

    host: str = Field(..., description="SMTP server host")
    port: int = Field(default=587, ge=1, le=65535, description="SMTP server port")
    username: str | None = Field(default=None, description="SMTP login user")
    password: str | None = Field(default=None, description="SMTP login password")
    use_tls: bool = Field(default=True, description="Upgrade the connection with STARTTLS")
    sender: str = Field(..., description="From address for outgoing mail")
    timeout: float = Field(default=10.0, gt=0.0, description="Connection timeout in seconds")


class NotificationConfig(BaseModel):
    """Delivery settings for send_notification actions."""

    channel: Literal["webhook", "log"] = Field(default="log", description="Delivery channel")
    webhook_url: str | None = Field(default=None, description="Endpoint receiving notifications")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra webhook headers")
    timeout: float = Field(default=10.0, gt=0.0, description="Webhook timeout in seconds")

    @model_validator(mode="after")
    def ensure_webhook_url(self) -> NotificationConfig:
        if self.channel == "webhook" and not self.webhook_url:
            raise ValueError("webhook notification channel requires webhook_url")
        return self


class AIAnalysisConfig(BaseModel):
    """Settings for ai_analysis actions."""

    default_model: str = Field(
        default="openai:gpt-4o-mini",
        description="Model used when a workflow's ai_model is 'auto'",
    )
    system_prompt: str = Field(
        default=(
            "You are a business data analyst. Analyse the JSON data you are given "
            "and answer concisely with the key insights."
        ),
        description="System prompt for analysis requests",
    )
    timeout: float | None = Field(
        default=60.0, gt=0.0, description="Request timeout in seconds"
    )


class UpdateTargetConfig(BaseModel):
    """An allow-listed destination for update_record actions."""

    name: str = Field(..., min_length=1, description="Name referenced from action config")
    collection: str = Field(..., min_length=1, description="Record collection to update")
    key_field: str = Field(default="id", description="Field matched against the action key")
    allowed_fields: list[str] = Field(
        ..., min_length=1, description="Fields the action may write"
    )


class EngineConfig(BaseSettings):
    """Main configuration for the workflow automation engine."""

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_ENGINE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    http: HTTPClientConfig = Field(
        default_factory=HTTPClientConfig, description="Outbound HTTP settings"
    )
    storage: StorageConfig = Field(
        default_factory=StorageConfig, description="Execution record storage"
    )
    execution: ExecutionConfig = Field(
        default_factory=ExecutionConfig, description="Run execution settings"
    )
    concurrency: ConcurrencyConfig = Field(
        default_factory=ConcurrencyConfig, description="Per-workflow concurrency policy"
    )
    smtp: SMTPConfig | None = Field(default=None, description="SMTP settings for email")
    notifications: NotificationConfig = Field(
        default_factory=NotificationConfig, description="Notification delivery"
    )
    ai: AIAnalysisConfig = Field(
        default_factory=AIAnalysisConfig, description="AI analysis settings"
    )
    update_targets: list[UpdateTargetConfig] = Field(
        default_factory=list, description="Allow-listed update_record targets"
    )
    workflows: list[WorkflowDefinition] = Field(
        default_factory=list, description="Workflow definitions"
    )

    @model_validator(mode="after")
    def ensure_unique_names(self) -> EngineConfig:
        workflow_ids = [workflow.id for workflow in self.workflows]
        duplicates = sorted({wid for wid in workflow_ids if workflow_ids.count(wid) > 1})
        if duplicates:
            raise ValueError(f"Duplicate workflow ids: {', '.join(duplicates)}")
        target_names = [target.name for target in self.update_targets]
        if len(target_names) != len(set(target_names)):
            raise ValueError("Duplicate update target names")
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
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

    @classmethod
    def from_json(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a JSON file."""

        import json

        _load_env_once()
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as handle:
            try:
                config_data = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON in config file: {exc}") from exc

        config_data = _expand_env_vars(config_data)
        return cls(**config_data)

    @classmethod
    def from_file(cls, path: str | Path) -> EngineConfig:
        """Load configuration choosing the parser from the file extension."""

        if Path(path).suffix.lower() == ".json":
            return cls.from_json(path)
        return cls.from_yaml(path)

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        """Get a workflow definition by id."""

        for workflow in self.workflows:
            if workflow.id == workflow_id:
                return workflow
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""

        return self.model_dump()
