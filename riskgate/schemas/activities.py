"""
Activity Schemas

Defines the input submitted to the risk engine for one guarded user
action (login, payment, withdrawal, ...) and the immutable record the
engine writes for it. Records double as history for later evaluations.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class ActivityType(str, Enum):
    """
    Well-known guarded activity types.

    The engine accepts any upper-case activity type string; these are
    the ones the platform routes emit today.
    """
    LOGIN = "LOGIN"
    ADMIN_LOGIN = "ADMIN_LOGIN"
    PAYMENT = "PAYMENT"
    ORDER_PLACE = "ORDER_PLACE"
    PROFILE_UPDATE = "PROFILE_UPDATE"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    WITHDRAWAL = "WITHDRAWAL"
    REFUND = "REFUND"


class Location(BaseModel):
    """
    Pre-resolved location of the caller.

    Accepts both latitude/longitude and the lat/lng shorthand used by
    the mobile clients' X-User-Location header.
    """
    model_config = ConfigDict(populate_by_name=True)

    country: Optional[str] = Field(
        default=None,
        description="Country name or ISO code, compared verbatim",
    )
    city: Optional[str] = Field(default=None)
    latitude: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("latitude", "lat"),
    )
    longitude: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("longitude", "lng", "lon"),
    )


class ActivityInput(BaseModel):
    """
    One user action submitted for evaluation.

    Built by the ingestion adapter from the authenticated request.
    """
    user_id: str = Field(
        ...,
        min_length=1,
        description="Authenticated user identifier",
    )
    activity_type: str = Field(
        ...,
        min_length=1,
        description="Activity type, e.g. LOGIN or PAYMENT",
    )
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_fingerprint: Optional[str] = Field(
        default=None,
        description="Client-computed device fingerprint (X-Device-Fingerprint)",
    )
    location: Optional[Location] = None
    session_id: Optional[str] = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Snapshot of request context",
    )

    @field_validator("user_id", mode="before")
    @classmethod
    def _coerce_user_id(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("activity_type", mode="before")
    @classmethod
    def _normalize_activity_type(cls, v: Any) -> Any:
        if isinstance(v, ActivityType):
            return v.value
        if isinstance(v, str):
            return v.strip().upper()
        return v


class ActivityRecord(BaseModel):
    """
    Append-only record of an evaluated activity.

    Written exactly once per evaluation, never mutated.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    activity_type: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_fingerprint: Optional[str] = None
    location: Optional[Location] = None
    session_id: Optional[str] = None
    risk_score: int = Field(..., ge=0, le=100)
    flagged: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)

    @property
    def country(self) -> Optional[str]:
        return self.location.country if self.location else None

    @classmethod
    def from_input(
        cls,
        activity: ActivityInput,
        risk_score: int,
        flagged: bool,
        created_at: Optional[datetime] = None,
    ) -> "ActivityRecord":
        return cls(
            user_id=activity.user_id,
            activity_type=activity.activity_type,
            ip_address=activity.ip_address,
            user_agent=activity.user_agent,
            device_fingerprint=activity.device_fingerprint,
            location=activity.location,
            session_id=activity.session_id,
            risk_score=risk_score,
            flagged=flagged,
            metadata=dict(activity.metadata),
            created_at=created_at or _utc_now(),
        )
