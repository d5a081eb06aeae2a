"""Domain entities: endpoints, schedules, templates and rolling stats."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, field_validator

from src.ports.collaborators import utc_now

__all__ = ["Recurrence", "Stats", "Endpoint", "Schedule", "Template", "new_id"]

_http_url_adapter = TypeAdapter(HttpUrl)


def new_id() -> str:
    """Return a fresh opaque entity identifier."""
    return uuid.uuid4().hex


def _validate_http_url(v: str, label: str) -> str:
    try:
        url = _http_url_adapter.validate_python(v)
        if url.scheme not in ("http", "https"):
            raise ValueError("Only http:// and https:// URLs allowed")
    except Exception as e:
        raise ValueError(f"Invalid {label}: {e}") from e
    return v


class Recurrence(str, Enum):
    """How a schedule's due time advances after execution."""

    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Stats(BaseModel):
    """Rolling execution counters embedded in endpoints and schedules.

    Attributes:
        total_count: Every recorded attempt.
        success_count: Attempts that ended with a 2xx response.
        failure_count: Every other attempt.
        last_executed_at: Wall-clock time of the last recorded attempt.
        average_response_time_ms: Incremental mean latency (failures count as 0 ms).
    """

    total_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_executed_at: datetime | None = None
    average_response_time_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        """Percentage of successful attempts, 0 when nothing was recorded."""
        if not self.total_count:
            return 0.0
        return self.success_count / self.total_count * 100


class Endpoint(BaseModel):
    """Configured outbound target with identity, rate-limit override and stats."""

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)
    url: str = Field(..., description="Validated outbound http(s) URL.")
    active: bool = True
    username: str | None = Field(default=None, max_length=80)
    avatar_url: str | None = None
    rate_limit: int | None = Field(default=None, ge=1, le=3600)
    description: str | None = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    stats: Stats = Field(default_factory=Stats)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Reject anything that is not an http(s) URL."""
        return _validate_http_url(v.strip(), "webhook URL")

    @field_validator("avatar_url")
    @classmethod
    def validate_avatar_url(cls, v: str | None) -> str | None:
        """Avatar reference is optional; blank means unset."""
        if v is None or not v.strip():
            return None
        return _validate_http_url(v.strip(), "avatar URL")

    @field_validator("username")
    @classmethod
    def blank_username_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    def identity(self) -> dict[str, str]:
        """Identity fields merged into every outbound payload."""
        fields: dict[str, str] = {}
        if self.username:
            fields["username"] = self.username
        if self.avatar_url:
            fields["avatar_url"] = self.avatar_url
        return fields

    def build_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of payload with this endpoint's identity merged in."""
        return {**payload, **self.identity()}


class Schedule(BaseModel):
    """Recurring or one-shot send task bound to an endpoint.

    ``recurrence`` is kept as a plain string so values written by other
    versions still load; unknown values are deactivated after one run.
    ``in_flight`` is engine-local and never serialized.
    """

    id: str = Field(default_factory=new_id)
    name: str = ""
    endpoint_id: str
    payload: dict[str, Any]
    due_at: datetime
    recurrence: str = Recurrence.ONCE.value
    active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    stats: Stats = Field(default_factory=Stats)
    in_flight: bool = Field(default=False, exclude=True)

    @field_validator("due_at")
    @classmethod
    def normalize_due_at(cls, v: datetime) -> datetime:
        """Store due times as aware UTC; naive values are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("recurrence", mode="before")
    @classmethod
    def recurrence_as_str(cls, v: Any) -> Any:
        if isinstance(v, Recurrence):
            return v.value
        return v

    def is_due(self, now: datetime) -> bool:
        """True when the schedule is active, idle and its due time has passed."""
        return self.active and not self.in_flight and self.due_at <= now


class Template(BaseModel):
    """Reusable message text that pre-fills a test or scheduled message."""

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)
    content: str = Field(..., min_length=1, max_length=2000)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    usage_count: int = Field(default=0, ge=0)

    @field_validator("name", "content")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v
