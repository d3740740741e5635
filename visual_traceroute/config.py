"""Configuration system using Pydantic for validation and type safety."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

KNOWN_PROVIDERS = ("ip2location", "ipapi", "ipwhois")


def _strip_placeholder(v: str | None) -> str | None:
    if v and v.startswith("<<<"):
        return None  # Placeholder value
    return v


class DnsConfig(BaseModel):
    """DNS-over-HTTPS resolver configuration."""

    url: str = "https://dns.google/resolve"
    timeout: float = 10.0


class GeolocationConfig(BaseModel):
    """Geolocation provider chain configuration."""

    enabled: bool = True
    providers: list[str] = Field(default=list(KNOWN_PROVIDERS))
    timeout: float = 10.0
    max_workers: int = Field(default=1, ge=1)

    @field_validator("providers")
    @classmethod
    def validate_providers(cls, v: list[str]) -> list[str]:
        """Reject provider names that have no client."""
        unknown = [p for p in v if p not in KNOWN_PROVIDERS]
        if unknown:
            raise ValueError(f"Unknown geolocation provider(s): {', '.join(unknown)}")
        return v


class TracerouteConfig(BaseModel):
    """Simulated traceroute configuration."""

    min_hops: int = Field(default=8, ge=1)
    max_hops: int = Field(default=20, ge=1)
    hop_delay: float = Field(default=0.0, ge=0.0)

    @model_validator(mode="after")
    def validate_hop_range(self) -> TracerouteConfig:
        """Make sure the hop range is not empty."""
        if self.min_hops > self.max_hops:
            raise ValueError("min_hops must not exceed max_hops")
        return self


class StateConfig(BaseModel):
    """Schedule state store configuration."""

    backend: Literal["memory", "file", "http"] = "file"
    key: str = "traceroute-schedules"
    path: Path = Path("./traceroute_state.json")
    url: str | None = None
    api_token: str | None = None
    timeout: float = 10.0
    max_conflict_retries: int = Field(default=3, ge=0)

    @field_validator("api_token")
    @classmethod
    def validate_api_token(cls, v: str | None) -> str | None:
        """Drop placeholder tokens."""
        return _strip_placeholder(v)

    @model_validator(mode="after")
    def validate_backend(self) -> StateConfig:
        """The HTTP backend needs a service URL."""
        if self.backend == "http" and not self.url:
            raise ValueError("state.url is required for the http backend")
        return self


class LogsConfig(BaseModel):
    """Log ingestion configuration."""

    enabled: bool = True
    url: str | None = None
    api_token: str | None = None
    timeout: float = 10.0
    source: str = "traceroute-app"
    app_name: str = "traceroute"

    @field_validator("api_token")
    @classmethod
    def validate_api_token(cls, v: str | None) -> str | None:
        """Drop placeholder tokens."""
        return _strip_placeholder(v)


class SchedulerConfig(BaseModel):
    """Periodic sweep configuration."""

    check_interval_minutes: int = Field(default=5, ge=1)


class VisualTracerouteConfig(BaseModel):
    """Main configuration for Visual Traceroute."""

    dns: DnsConfig = DnsConfig()
    geolocation: GeolocationConfig = GeolocationConfig()
    traceroute: TracerouteConfig = TracerouteConfig()
    state: StateConfig = StateConfig()
    logs: LogsConfig = LogsConfig()
    scheduler: SchedulerConfig = SchedulerConfig()


def load_from_env() -> dict[str, Any]:
    """Load configuration from environment variables.

    Environment variables should follow the pattern:
    VISUAL_TRACEROUTE_<SECTION>_<KEY>=value

    Examples:
        VISUAL_TRACEROUTE_STATE_BACKEND=http
        VISUAL_TRACEROUTE_STATE_URL=https://tenant.example.com/state
        VISUAL_TRACEROUTE_LOGS_API_TOKEN=mytoken
    """
    config = {}
    prefix = "VISUAL_TRACEROUTE_"

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix) :].lower()
        parts = config_key.split("_", 1)

        if len(parts) != 2:
            continue

        section, field = parts

        match value.lower():
            case "true" | "yes" | "on":
                value = True
            case "false" | "no" | "off":
                value = False
            case _ if value.isdigit():
                value = int(value)

        if section not in config:
            config[section] = {}
        config[section][field] = value

    return config


def find_config_file() -> Path | None:
    """Find configuration file in standard locations.

    Search order:
    1. ./visual_traceroute.toml (current directory)
    2. ~/.config/visual-traceroute/config.toml (XDG config)
    3. ~/.visual-traceroute.toml (home directory)
    """
    candidates = [
        Path.cwd() / "visual_traceroute.toml",
        Path.home() / ".config" / "visual-traceroute" / "config.toml",
        Path.home() / ".visual-traceroute.toml",
    ]

    for candidate in candidates:
        if candidate.exists():
            return candidate

    return None


def load_config(config_file: Path | None = None) -> VisualTracerouteConfig:
    """Load configuration from multiple sources with proper validation.

    Sources are loaded in this order (later sources override earlier ones):
    1. Default configuration (embedded in code)
    2. Configuration file (TOML format)
    3. Environment variables

    Args:
        config_file: Path to configuration file. If None, will search standard locations.

    Returns:
        Validated configuration object.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    config_dict = {}

    if config_file is None:
        config_file = find_config_file()

    if config_file and config_file.exists():
        try:
            with open(config_file, "rb") as f:
                file_config = tomllib.load(f)
                config_dict.update(file_config)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigurationError(
                f"Failed to load config file {config_file}: {e}"
            ) from e

    env_config = load_from_env()
    for section, values in env_config.items():
        if section not in config_dict:
            config_dict[section] = {}
        config_dict[section].update(values)

    try:
        return VisualTracerouteConfig(**config_dict)
    except Exception as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def create_default_config(output_file: Path) -> None:
    """Create a default configuration file with sensible defaults."""

    toml_content = """# Visual Traceroute Configuration

[dns]
url = "https://dns.google/resolve"
timeout = 10.0

[geolocation]
enabled = true
providers = ["ip2location", "ipapi", "ipwhois"]
timeout = 10.0
max_workers = 1  # > 1 looks up hops in parallel, results keep hop order

[traceroute]
min_hops = 8
max_hops = 20
hop_delay = 0.0  # seconds between simulated hops

[state]
backend = "file"  # memory | file | http
key = "traceroute-schedules"
path = "./traceroute_state.json"
# url = "https://your-tenant.example.com/platform/app-state"
# api_token = "your_api_token_here"
timeout = 10.0
max_conflict_retries = 3

[logs]
enabled = true
# url = "https://your-tenant.example.com/api/v2/logs/ingest"
# api_token = "your_api_token_here"
timeout = 10.0
source = "traceroute-app"
app_name = "traceroute"

[scheduler]
check_interval_minutes = 5
"""

    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text(toml_content)


class ConfigurationError(Exception):
    """Configuration-related errors."""

    pass
