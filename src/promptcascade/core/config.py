# src/promptcascade/core/config.py
"""
Configuration schema and loading for promptcascade.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator


class CascadeSettings(BaseModel):
    """Top-level cascade traversal behaviour."""

    model_config = {"frozen": True}

    max_retries: int = Field(default=3, gt=0, description="Normal attempts per node before a recovery decision")
    max_rate_limit_waits: int = Field(default=12, ge=0, description="Rate-limit waits per node before escalating")
    rate_limit_fallback_seconds: float = Field(
        default=2.5,
        ge=0,
        description="Wait used when the service signals 'too many requests' without a duration",
    )
    rate_limit_padding_ms: int = Field(default=250, ge=0, description="Added to every explicit retry-after wait")
    pause_poll_interval_seconds: float = Field(default=0.2, gt=0, description="Sleep between pause checks")
    fallback_message: str = Field(
        default="Execute this prompt",
        min_length=1,
        description="Message sent when a node has neither user nor admin text",
    )
    skip_all_previews: bool = Field(default=False, description="Never ask for action preview confirmation")
    max_levels: int = Field(default=1000, gt=0, description="Guard against cyclic parent data")


class ChildCascadeSettings(BaseModel):
    """Recursive execution of action-created children."""

    model_config = {"frozen": True}

    max_depth: int = Field(default=99, ge=0, description="Maximum recursion depth for auto-run children")


class RetrySettings(BaseModel):
    """Backoff between normal attempts of one node."""

    model_config = {"frozen": True}

    initial_delay_seconds: float = Field(default=1.0, gt=0, description="Initial backoff delay")
    max_delay_seconds: float = Field(default=30.0, gt=0, description="Maximum backoff delay")
    exponential_base: float = Field(default=2.0, gt=1.0, description="Exponential backoff base")
    jitter_seconds: float = Field(default=0.5, ge=0, description="Random jitter added to each delay")


class GenerationSettings(BaseModel):
    """HTTP generation service endpoint."""

    model_config = {"frozen": True}

    base_url: str = Field(default="http://localhost:8000", description="Generation service base URL")
    path: str = Field(default="/v1/generate", description="Streaming generation endpoint path")
    api_key: str | None = Field(default=None, description="Bearer token, usually from PROMPTCASCADE_GENERATION__API_KEY")
    model: str | None = Field(default=None, description="Model name forwarded to the service")
    timeout_seconds: float = Field(default=300.0, gt=0, description="Read timeout for one streaming call")

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("path must start with '/'")
        return v.rstrip("/")


class StoreSettings(BaseModel):
    """Prompt tree and trace storage."""

    model_config = {"frozen": True}

    url: str = Field(default="sqlite:///./promptcascade.db", description="SQLAlchemy connection URL")


class LoggingSettings(BaseModel):
    model_config = {"frozen": True}

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(default=False, description="Emit JSON lines instead of console output")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        normalized = v.upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return normalized


class TracingSettings(BaseModel):
    """Execution trace recording."""

    model_config = {"frozen": True}

    enabled: bool = Field(default=True, description="Record traces and spans in the store")


class PromptCascadeSettings(BaseModel):
    """Top-level configuration.

    All sections have defaults, so an empty settings file is valid.
    """

    model_config = {"frozen": True}

    cascade: CascadeSettings = Field(default_factory=CascadeSettings)
    child_cascade: ChildCascadeSettings = Field(default_factory=ChildCascadeSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    tracing: TracingSettings = Field(default_factory=TracingSettings)


def load_settings(config_path: Path) -> PromptCascadeSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (PROMPTCASCADE_*) - highest priority
    2. Config file (settings.yaml)
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: PROMPTCASCADE_STORE__URL for nested keys.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated PromptCascadeSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="PROMPTCASCADE",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; Pydantic fields are lowercase
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): _lower_keys(v) for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    return PromptCascadeSettings(**raw_config)


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value
