"""Configuration management with Pydantic Settings.

Settings are read from environment variables first; values from the YAML
config file (``--config`` or ``CONFIG_PATH``) override them. The resulting
``Settings`` object is immutable and passed explicitly to every component.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

CONFIG_PATH_ENV = "CONFIG_PATH"

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> timedelta:
    """Parse a duration given in seconds or as a Go-style string (``1h30m``).

    Raises:
        ValueError: If the value is not a valid duration.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = str(value).strip()
    try:
        return timedelta(seconds=float(text))
    except ValueError:
        pass

    pos = 0
    seconds = 0.0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration '{value}'")
    return timedelta(seconds=seconds)


class Settings(BaseSettings):
    """Bot settings.

    Field names double as YAML keys; environment variables use the upper
    case field name without a prefix (e.g. ``TELEGRAM_TOKEN``).

    Example:
        ```python
        from alertmanager_telegram.config import load_settings

        settings = load_settings("/etc/alertmanager-bot/config.yml")
        print(settings.alertmanager_url)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Upstream services
    telegram_token: SecretStr = Field(description="Telegram bot API token")
    alertmanager_url: str = Field(
        default="http://localhost:9093",
        description="Alertmanager base URL",
    )
    prometheus_url: str = Field(
        default="http://localhost:9090",
        description="Prometheus base URL",
    )
    api_timeout: timedelta = Field(
        default=timedelta(seconds=10),
        description="Timeout for every upstream API call",
    )

    # Templates
    webhook_alerts_template_path: str | None = None
    gettable_alerts_template_path: str | None = None
    silences_template_path: str | None = None
    time_format: str = Field(
        default="%d/%m/%Y %H:%M:%S",
        validation_alias=AliasChoices("time_format", "timeformat"),
        description="strftime pattern used by format_date",
    )
    time_zone: str = Field(
        default="Europe/Moscow",
        validation_alias=AliasChoices("time_zone", "timezone"),
        description="IANA time zone used by format_date",
    )

    # Menus
    keyboard_rows: int = Field(default=2, ge=1, le=8, description="Buttons per keyboard row")
    button_prefix_ok: str = ""
    button_prefix_fail: str = ""

    # Webhook HTTP server
    bind_address: str = "0.0.0.0"
    bind_port: int = Field(default=8088, ge=1, le=65535)
    disable_http: bool = False

    # Chat access and delivery
    users: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Usernames or user ids allowed to talk to the bot",
    )
    send_message_retry_count: int = Field(default=3, ge=1)
    silence_duration: timedelta = Field(default=timedelta(hours=1))

    # Session store
    session_ttl: timedelta = Field(default=timedelta(hours=24))
    session_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    logfile_path: str | None = None

    @field_validator("api_timeout", "silence_duration", "session_ttl", mode="before")
    @classmethod
    def validate_duration(cls, v: Any) -> timedelta:
        """Accept seconds or Go-style duration strings."""
        return parse_duration(v)

    @field_validator("users", mode="before")
    @classmethod
    def split_users(cls, v: Any) -> list[str]:
        """Accept a comma separated string as well as a list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [u.strip() for u in v.split(",") if u.strip()]
        return [str(u) for u in v]

    @field_validator("alertmanager_url", "prometheus_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must be an HTTP(S) endpoint")
        return v.rstrip("/")

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("redis_url must start with redis://, rediss:// or unix://")
        return v

    @field_validator("time_zone")
    @classmethod
    def validate_time_zone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown time zone '{v}'") from e
        return v

    @field_validator("telegram_token")
    @classmethod
    def validate_token(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value():
            raise ValueError("telegram token is not set")
        return v

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str]:
        """Get a summary of settings with secrets redacted."""
        token = self.telegram_token.get_secret_value()
        return {
            "telegram_token": f"{token[:6]}***" if len(token) > 6 else "***",
            "alertmanager_url": self.alertmanager_url,
            "prometheus_url": self.prometheus_url,
            "api_timeout": str(self.api_timeout),
            "http": (
                "disabled" if self.disable_http else f"{self.bind_address}:{self.bind_port}"
            ),
            "users": str(len(self.users)),
            "session_backend": self.session_backend,
            "session_ttl": str(self.session_ttl),
            "silence_duration": str(self.silence_duration),
            "time_zone": self.time_zone,
            "log_level": self.log_level,
        }


def read_config_file(path: str | Path) -> dict[str, Any]:
    """Read the YAML config file.

    Raises:
        OSError: If the file cannot be opened.
        ValueError: If the file is not a YAML mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"config file {path} must contain a mapping")
    return data


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings from the environment and an optional YAML file.

    Args:
        config_path: YAML file path. Falls back to ``CONFIG_PATH``.

    Raises:
        ValidationError: If required settings are missing or invalid.
        OSError: If the config file cannot be read.
        ValueError: If the config file is not a mapping.
    """
    path = config_path or os.environ.get(CONFIG_PATH_ENV)
    file_values = read_config_file(path) if path else {}
    return Settings(**file_values)
