"""Configuration schema using Pydantic."""

import re
from pathlib import Path
from typing import Any, ClassVar, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

ProviderName = Literal["openai", "gemini", "ollama", "custom"]


def parse_hhmm(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def validate_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"unknown timezone {value!r}") from None
    return value


class WorkingHoursConfig(BaseModel):
    """Business-hours window for auto-replies."""
    enabled: bool = False  # Restrict auto-replies to the window
    start: str = "09:00"
    end: str = "17:00"
    timezone: str = "UTC"

    @field_validator("start", "end")
    @classmethod
    def _check_format(cls, value: str) -> str:
        if not _HHMM.match(value):
            raise ValueError(f"must be in HH:MM format, got {value!r}")
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        return validate_timezone(value)

    @model_validator(mode="after")
    def _check_same_day(self) -> "WorkingHoursConfig":
        # Windows that wrap past midnight (e.g. 22:00-06:00) are unsupported
        if parse_hhmm(self.start) > parse_hhmm(self.end):
            raise ValueError(
                f"working hours {self.start}-{self.end} span midnight, which is not supported"
            )
        return self


class LLMSettings(BaseModel):
    """Response generation settings."""
    enabled: bool = False
    auto_reply: bool = True  # Use the LLM for auto-replies
    provider: ProviderName = "gemini"
    model: str = "gemini-1.5-flash"
    api_key: str = ""
    base_url: str = ""  # OpenAI-compatible or Ollama endpoint
    custom_endpoint: str = ""  # For the custom HTTP provider
    headers: dict[str, str] = Field(default_factory=dict)
    max_tokens: int = Field(default=150, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    system_prompt: str = (
        "You are a helpful WhatsApp bot assistant. Respond naturally and helpfully "
        "to user messages. Keep responses concise and friendly."
    )
    fallback_message: str = (
        "I apologize, but I cannot process your message right now. Please try again later."
    )
    rate_limit_per_hour: int = Field(default=60, ge=0)
    timeout_ms: int = Field(default=10000, gt=0)
    only_during_business_hours: bool = False

    # Changing any of these requires a new provider and connectivity probe
    REINIT_FIELDS: ClassVar[tuple[str, ...]] = (
        "enabled", "provider", "api_key", "base_url", "custom_endpoint", "headers",
    )

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    def requires_reinit(self, other: "LLMSettings") -> bool:
        """Check whether moving to `other` needs provider re-initialization."""
        return any(getattr(self, name) != getattr(other, name) for name in self.REINIT_FIELDS)

    def public_dict(self) -> dict[str, Any]:
        """Settings without credentials."""
        data = self.model_dump(exclude={"api_key", "headers"})
        data["has_api_key"] = bool(self.api_key)
        return data


class BotSettings(BaseModel):
    """Runtime auto-reply settings, hot-swappable."""
    bot_name: str = "WhatsApp Bot"
    auto_reply: bool = True
    auto_reply_message: str = "Thanks for your message! We will get back to you soon."
    after_hours_message: str = (
        "Thank you for your message. We are currently outside business hours. "
        "We will respond as soon as possible during our working hours."
    )
    failure_notice: str = "Sorry, something went wrong while replying. Please try again later."
    allowed_contacts: list[str] = Field(default_factory=list)  # Empty = everyone
    blocked_contacts: list[str] = Field(default_factory=list)
    working_hours: WorkingHoursConfig = Field(default_factory=WorkingHoursConfig)
    llm: LLMSettings = Field(default_factory=LLMSettings)

    def merged(self, updates: dict[str, Any]) -> "BotSettings":
        """Return validated settings with `updates` applied (nested dicts merge)."""
        data = self.model_dump()
        for key, value in updates.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return BotSettings.model_validate(data)


class ConnectionConfig(BaseModel):
    """Transport reconnection policy."""
    session_name: str = "replybot-session"
    max_retries: int = Field(default=3, ge=0)
    auth_retry_delay: float = 5.0  # Seconds before rebuilding the client after auth failure
    reconnect_delay: float = 10.0  # Seconds before reconnecting after a disconnect
    restart_delay: float = 2.0
    bulk_send_delay: float = 1.0  # Seconds between sends in a bulk send


class AnalyticsConfig(BaseModel):
    """Analytics aggregation settings."""
    timezone: str = "UTC"  # Zone for daily keys and hour-of-day buckets
    error_log_size: int = Field(default=1000, gt=0)
    max_contacts: int = Field(default=10000, gt=0)
    reply_log_size: int = Field(default=5000, gt=0)
    maintenance_interval_seconds: float = 300.0

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        return validate_timezone(value)


class StorageConfig(BaseModel):
    """Flat-file storage settings."""
    data_path: str = "~/.replybot/data"
    persist: bool = False

    @property
    def path(self) -> Path:
        return Path(self.data_path).expanduser()


class BroadcastConfig(BaseModel):
    """Event broadcast settings."""
    webhook_url: str = ""
    timeout: float = 10.0


class Config(BaseSettings):
    """Root configuration for replybot."""
    model_config = SettingsConfigDict(
        env_prefix="REPLYBOT_",
        env_nested_delimiter="__",
    )

    bot: BotSettings = Field(default_factory=BotSettings)
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    broadcast: BroadcastConfig = Field(default_factory=BroadcastConfig)
