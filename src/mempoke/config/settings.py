"""
MemPoke settings.

Settings are read from ``MEMPOKE_*`` environment variables and an optional
``.env`` file, then overridden by an optional YAML file and finally by
explicit values (command line options).
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..discovery.consul import DEFAULT_WAIT, parse_wait
from ..errors import ConfigurationError
from ..probes.task import ProbeConfig

logger = logging.getLogger(__name__)


class ProbeSettings(BaseSettings):
    """Configuration of the discovery loop, the node probes and the metrics endpoint."""

    model_config = SettingsConfigDict(
        env_prefix="MEMPOKE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    service_name: str = Field(default="mempoke", description="Name used in log records")

    # Consul
    consul_hostname: str = Field(default="localhost", description="Consul hostname")
    consul_port: int = Field(default=8500, ge=1, le=65535, description="Consul port")
    consul_scheme: str = Field(default="http", description="Consul URL scheme")
    consul_token: str | None = Field(default=None, description="Consul ACL token")
    consul_wait: str = Field(default=DEFAULT_WAIT, description="Blocking query max wait")
    services_tag: str = Field(..., description="Tag to select services to probe")

    # Discovery pacing: the bucket refills one token per second and each poll
    # costs poll_interval tokens
    poll_interval: int = Field(default=60, gt=0, description="Min seconds between polls")
    poll_bucket_capacity: int | None = Field(
        default=None, gt=0, description="Token bucket capacity, defaults to poll_interval"
    )

    # Probes
    probe_interval: float = Field(default=1.0, gt=0, description="Seconds between probes")
    command_timeout: float = Field(default=1.0, gt=0, description="Deadline of a command")
    connect_timeout: float = Field(default=1.0, gt=0, description="Deadline of a connect")
    reconnect_backoff: float = Field(default=0.5, ge=0, description="Pause before reconnect")
    probe_key: str = Field(default="mempoke", min_length=1, max_length=250)
    probe_value: str = Field(default="mempoke")
    probe_ttl: int = Field(default=60, ge=0)

    # Metrics endpoint
    http_host: str = Field(default="0.0.0.0", description="Metrics endpoint host")
    http_port: int = Field(default=8080, ge=1, le=65535, description="Metrics endpoint port")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="json or text")

    @field_validator("services_tag")
    @classmethod
    def _tag_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("services_tag must not be empty")
        return value

    @field_validator("consul_scheme")
    @classmethod
    def _known_scheme(cls, value: str) -> str:
        value = value.lower()
        if value not in ("http", "https"):
            raise ValueError("consul_scheme must be http or https")
        return value

    @field_validator("consul_wait")
    @classmethod
    def _valid_wait(cls, value: str) -> str:
        parse_wait(value)
        return value

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "text"):
            raise ValueError("log_format must be json or text")
        return value

    @property
    def consul_base_url(self) -> str:
        return f"{self.consul_scheme}://{self.consul_hostname}:{self.consul_port}"

    @property
    def token_cost(self) -> int:
        """Tokens consumed by one catalog poll."""
        return self.poll_interval

    @property
    def bucket_capacity(self) -> int:
        return self.poll_bucket_capacity or self.poll_interval

    def probe_config(self) -> ProbeConfig:
        return ProbeConfig(
            probe_interval=self.probe_interval,
            command_timeout=self.command_timeout,
            connect_timeout=self.connect_timeout,
            reconnect_backoff=self.reconnect_backoff,
            key=self.probe_key,
            value=self.probe_value.encode("utf-8"),
            ttl=self.probe_ttl,
        )


def load_yaml_config(config_file: str | Path) -> dict[str, Any]:
    """Load settings from a YAML file; an empty file yields no settings."""
    path = Path(config_file)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return data


def load_settings(config_file: str | Path | None = None, **overrides: Any) -> ProbeSettings:
    """
    Build validated settings.

    Args:
        config_file: Optional YAML file with settings
        overrides: Explicit values; ``None`` values are ignored

    Raises:
        ConfigurationError: the settings are invalid
    """
    values: dict[str, Any] = {}
    if config_file is not None:
        values.update(load_yaml_config(config_file))
    values.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return ProbeSettings(**values)
    except ValidationError as e:
        logger.error("Configuration validation failed: %s", e)
        raise ConfigurationError(str(e)) from e
