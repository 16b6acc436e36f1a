"""
Configuration management for PlayTrack playback telemetry.

Supports loading from environment variables and YAML files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from playtrack.common.exceptions import ConfigError


# ---------------------------------------------------------------------------
# Ingestion API
# ---------------------------------------------------------------------------

class ApiSettings(BaseSettings):
    """Video-stream API endpoints used for telemetry."""

    base_url: str = "http://localhost:8000"
    auth_token: str = ""

    # Client-side bound on every network call (seconds)
    request_timeout: float = 5.0

    batch_path: str = "/api/v1/analytics/events/batch"
    policy_path: str = "/api/v1/admin/analytics/client-config"


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------

class TelemetrySettings(BaseSettings):
    """Event buffering and flush configuration."""

    # Flush when this many events are buffered
    max_batch_size: int = 50

    # Timer-driven flush interval (seconds)
    batch_interval_seconds: float = 30.0

    # Offline outbox cap (events)
    max_pending_events: int = 500

    # Session defaults
    source: Literal["app", "web", "admin"] = "web"
    purpose: Literal["stream", "download"] = "stream"

    # Platform tag used in generated device fingerprints
    fingerprint_platform: str = "py"


class PolicySettings(BaseSettings):
    """Defaults applied until the server policy is fetched."""

    analytics_enabled: bool = True
    level: Literal["full", "sampling", "high_load", "critical"] = "full"
    sampling_rate: float = 1.0
    progress_interval_ms: int = 10000


class ResumeSettings(BaseSettings):
    """Resume point persistence."""

    # Periodic snapshot interval while playing (seconds)
    interval_seconds: float = 10.0

    # Points closer than this to either end are not offered (seconds)
    margin_seconds: float = 5.0


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class StorageSettings(BaseSettings):
    """Local durable key/value store."""

    backend: Literal["memory", "file", "redis"] = "file"
    file_path: str = "~/.playtrack/store.json"
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "playtrack:"


# ---------------------------------------------------------------------------
# Observability
# ---------------------------------------------------------------------------

class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["json", "console"] = "json"


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Main PlayTrack settings."""

    model_config = SettingsConfigDict(
        env_prefix="PLAYTRACK_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = "PlayTrack"
    app_version: str = "0.1.0"
    debug: bool = False
    env: Literal["dev", "prod", "test"] = "dev"

    # Nested settings
    api: ApiSettings = Field(default_factory=ApiSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    resume: ResumeSettings = Field(default_factory=ResumeSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        if v not in ("dev", "prod", "test"):
            raise ValueError(f"Invalid environment: {v}")
        return v


# ---------------------------------------------------------------------------
# YAML Loader
# ---------------------------------------------------------------------------

def load_yaml_config(config_path: Path) -> dict:
    """Load configuration from YAML file."""
    if not config_path.exists():
        return {}
    with open(config_path) as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Invalid YAML in {config_path.name}",
                details={"path": str(config_path), "error": str(e)},
            ) from e


def merge_configs(base: dict, override: dict) -> dict:
    """Deep-merge two configuration dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value
    return result


_SECTION_CLASSES: dict[str, type[BaseSettings]] = {
    "api": ApiSettings,
    "telemetry": TelemetrySettings,
    "policy": PolicySettings,
    "resume": ResumeSettings,
    "storage": StorageSettings,
    "logging": LoggingSettings,
}


@lru_cache
def get_settings() -> Settings:
    """
    Get application settings.

    Loads from:
    1. configs/base.yaml (base configuration)
    2. configs/{env}.yaml (environment-specific overrides)
    3. Environment variables (highest priority)
    """
    import os

    env = os.getenv("PLAYTRACK_ENV", "dev")

    config_dir = Path(os.getenv("PLAYTRACK_CONFIG_DIR", Path(__file__).parent.parent.parent / "configs"))

    base_config = load_yaml_config(Path(config_dir) / "base.yaml")
    env_config = load_yaml_config(Path(config_dir) / f"{env}.yaml")
    merged = merge_configs(base_config, env_config)

    flat_config: dict = {}
    if "app" in merged:
        flat_config["app_name"] = merged["app"].get("name", "PlayTrack")
        flat_config["app_version"] = merged["app"].get("version", "0.1.0")
        flat_config["debug"] = merged["app"].get("debug", False)

    flat_config["env"] = env

    # pydantic-settings gives init kwargs higher priority than env vars,
    # so env-var overrides are merged into the YAML dict first.
    for section_key, settings_cls in _SECTION_CLASSES.items():
        section_data = dict(merged.get(section_key, {}))

        # PLAYTRACK_SECTION__FIELD → field
        prefix = f"PLAYTRACK_{section_key.upper()}__"
        for env_key, env_value in os.environ.items():
            if env_key.startswith(prefix):
                field_name = env_key[len(prefix):].lower()
                section_data[field_name] = env_value

        flat_config[section_key] = settings_cls(**section_data)

    return Settings(**flat_config)
