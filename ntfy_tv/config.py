"""
Configuration loading and validation.

Loads service configuration from a YAML file. Every section has defaults,
so an empty file yields a working configuration against ntfy.sh.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from .topics import Invalid, validate

MIN_DISPLAY_DURATION_SECONDS = 2
MAX_DISPLAY_DURATION_SECONDS = 15


class RelayConfig(BaseModel):
    url: str = "wss://ntfy.sh"
    health_url: str = "https://ntfy.sh/v1/health"
    ping_interval_seconds: float = 30.0
    check_network: bool = True
    request_timeout_seconds: float = 10.0


class ReconnectConfig(BaseModel):
    base_delay_ms: int = Field(default=1000, gt=0)
    max_delay_ms: int = Field(default=60000, gt=0)
    max_attempts: int = Field(default=10, ge=0)


class SessionConfig(BaseModel):
    max_messages: int = Field(default=100, gt=0)


class StateConfig(BaseModel):
    db_path: str = "./data/ntfy_tv.db"


class NotificationConfig(BaseModel):
    display_duration_seconds: int = 5
    overlay_permission: bool = False
    notification_permission: bool = True

    @field_validator("display_duration_seconds")
    @classmethod
    def _check_duration(cls, value: int) -> int:
        if not MIN_DISPLAY_DURATION_SECONDS <= value <= MAX_DISPLAY_DURATION_SECONDS:
            raise ValueError(
                f"Display duration must be between {MIN_DISPLAY_DURATION_SECONDS} "
                f"and {MAX_DISPLAY_DURATION_SECONDS} seconds"
            )
        return value


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "json"


class MetricsConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 9090


class AppConfig(BaseModel):
    relay: RelayConfig = Field(default_factory=RelayConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    subscriptions: list[str] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @field_validator("subscriptions")
    @classmethod
    def _check_topics(cls, topics: list[str]) -> list[str]:
        for topic in topics:
            result = validate(topic)
            if isinstance(result, Invalid):
                raise ValueError(f"{topic!r}: {result.reason}")
        return topics


def load_config(path: str | Path) -> AppConfig:
    """Load and validate configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return AppConfig.model_validate(raw)
