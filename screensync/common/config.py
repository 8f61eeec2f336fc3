"""
Configuration management for ScreenSync.

Supports loading from YAML files and environment variables.
Settings cover the remote signage platform, playlist reconciliation,
the upload worker and the publish pipeline.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from screensync.common.exceptions import ConfigError


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------

class DatabaseSettings(BaseSettings):
    """PostgreSQL configuration."""

    host: str = "localhost"
    port: int = 5432
    name: str = "screensync"
    user: str = "screensync"
    password: str = ""
    pool_size: int = 10
    max_overflow: int = 20

    @property
    def async_url(self) -> str:
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"

    @property
    def sync_url(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


class RedisSettings(BaseSettings):
    """Redis configuration."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: str = ""
    pool_size: int = 10

    @property
    def url(self) -> str:
        if self.password:
            return f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class ServerSettings(BaseSettings):
    """Uvicorn / HTTP server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 1
    reload: bool = False


# ---------------------------------------------------------------------------
# Remote signage platform
# ---------------------------------------------------------------------------

class PlatformSettings(BaseSettings):
    """Remote signage-platform API configuration."""

    base_url: str = "https://app.yodeck.com/api/v2"

    # "label:secret" – sent as "Authorization: Token label:secret"
    auth_token: str = ""

    timeout_s: float = 15.0
    max_retries: int = 3
    retry_base_delay_s: float = 1.0
    max_concurrency: int = 5

    # Truncation applied to error bodies kept for diagnostics
    error_body_limit: int = 500

    # List endpoints are paginated with limit/offset
    page_size: int = 100


# ---------------------------------------------------------------------------
# Playback reconciliation
# ---------------------------------------------------------------------------

class PlaybackSettings(BaseSettings):
    """Per-screen playlist triplet configuration."""

    # Canonical names: "<prefix> | BASELINE | SCREEN | <player_id>"
    playlist_prefix: str = "EVZ"

    # House/news media that every baseline playlist must contain
    baseline_media_ids: list[int] = [27478716, 27476141, 27477130, 27476083]

    max_ads_per_screen: int = 20
    item_duration_s: int = 15

    # Screen content source type that is never allowed on a screen
    forbidden_source_type: str = "layout"

    verify_retry_delay_s: float = 3.0

    # Sleep between screens in batch loops (remote rate limits)
    inter_screen_delay_s: float = 0.5


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------

class UploadSettings(BaseSettings):
    """Upload job worker configuration."""

    min_bytes: int = 200 * 1024
    allowed_mime_types: list[str] = [
        "video/mp4",
        "video/quicktime",
        "video/x-msvideo",
        "video/x-matroska",
    ]

    max_attempts: int = 5

    # Backoff between attempts: 1m, 5m, 15m, 1h, 6h (last value repeats)
    retry_schedule_s: list[int] = [60, 300, 900, 3600, 21600]

    # Remote status polling (last interval repeats until timeout)
    poll_intervals_s: list[float] = [2, 4, 8, 15]
    poll_timeout_s: float = 120.0
    stuck_after_polls: int = 5

    # An UPLOADING/POLLING job untouched for poll_timeout_s + this is re-queued
    abandon_margin_s: float = 300.0

    # Pick up a due job while reconciling instead of waiting for the worker
    resolve_inline: bool = False


class PublishSettings(BaseSettings):
    """Publish pipeline configuration."""

    bypass_contract_gating: bool = False

    # A PENDING publish older than this is considered abandoned
    stale_lock_s: int = 900

    # How long a concurrent publish waits for the in-flight run
    concurrent_wait_s: float = 120.0
    concurrent_poll_interval_s: float = 2.0


class StorageSettings(BaseSettings):
    """Object storage (raw advertiser videos)."""

    root: str = "./data/objects"


# ---------------------------------------------------------------------------
# Observability
# ---------------------------------------------------------------------------

class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["json", "console"] = "json"


class MonitoringSettings(BaseSettings):
    """Prometheus / monitoring configuration."""

    enabled: bool = True
    playback_state_ttl_s: int = 30


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="SCREENSYNC_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application
    app_name: str = "ScreenSync"
    app_version: str = "0.3.0"
    debug: bool = False
    env: Literal["dev", "prod", "test"] = "dev"

    # Nested settings
    server: ServerSettings = Field(default_factory=ServerSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    platform: PlatformSettings = Field(default_factory=PlatformSettings)
    playback: PlaybackSettings = Field(default_factory=PlaybackSettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    publish: PublishSettings = Field(default_factory=PublishSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

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
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(
            "Config file must contain a mapping", {"path": str(config_path)}
        )
    return data


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
    "server": ServerSettings,
    "database": DatabaseSettings,
    "redis": RedisSettings,
    "platform": PlatformSettings,
    "playback": PlaybackSettings,
    "upload": UploadSettings,
    "publish": PublishSettings,
    "storage": StorageSettings,
    "logging": LoggingSettings,
    "monitoring": MonitoringSettings,
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

    env = os.getenv("SCREENSYNC_ENV", "dev")

    config_dir = Path(__file__).parent.parent.parent / "configs"

    base_config = load_yaml_config(config_dir / "base.yaml")
    env_config = load_yaml_config(config_dir / f"{env}.yaml")
    merged = merge_configs(base_config, env_config)

    flat_config: dict = {}
    if "app" in merged:
        flat_config["app_name"] = merged["app"].get("name", "ScreenSync")
        flat_config["app_version"] = merged["app"].get("version", "0.3.0")
        flat_config["debug"] = merged["app"].get("debug", False)

    flat_config["env"] = env

    # pydantic-settings gives init kwargs higher priority than env vars,
    # so env-var overrides are merged into the YAML dict first.
    for section_key, settings_cls in _SECTION_CLASSES.items():
        section_data = dict(merged.get(section_key, {}))

        # SCREENSYNC_SECTION__FIELD → field
        prefix = f"SCREENSYNC_{section_key.upper()}__"
        for env_key, env_value in os.environ.items():
            if env_key.startswith(prefix):
                field_name = env_key[len(prefix):].lower()
                section_data[field_name] = env_value

        flat_config[section_key] = settings_cls(**section_data)

    return Settings(**flat_config)


# Convenience alias
settings = get_settings()
