"""
Domain models for accounts, relationships and heart-rate aggregation.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation; the ORM rows in ``heartlink.storage`` are
projected into them before leaving the store layer.
"""

from datetime import UTC, date, datetime
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Role(IntEnum):
    """Account roles. New roles need an explicit member here."""

    MONITORED_USER = 1
    RESPONSIBLE_PARTY = 2


class Account(BaseModel):
    """Public account projection. The credential hash never appears here."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    full_name: str
    email: str
    phone: str
    username: str
    role: Role
    created_at: datetime | None = None


class Sample(BaseModel):
    """Single heart-rate observation."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    user_id: int
    heart_rate: float
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class DailyAggregate(BaseModel):
    """Running summary of one user's samples on one canonical day."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    user_id: int
    calendar_day: date
    mean_value: float
    min_value: float
    max_value: float
    sample_count: int = Field(ge=1)


class Envelope(BaseModel):
    """Outcome of a facade operation: success flag, message and payload."""

    ok: bool
    message: str
    payload: Any = None
    error: str | None = Field(default=None, description="ErrorKind value on failure")
    details: dict[str, Any] = Field(default_factory=dict)
