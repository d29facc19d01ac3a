"""
Fraud Alert Schemas

Alerts are created by the risk engine when an activity is classified
risky (or directly by the payment mismatch gate). They are resolved
later by the review workflow and never deleted.
"""

from datetime import datetime, UTC
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class AlertType(str, Enum):
    """Category of a fraud alert, used by reviewers for triage."""
    PAYMENT_MISMATCH = "PAYMENT_MISMATCH"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    VELOCITY_CHECK = "VELOCITY_CHECK"
    IP_CHANGE = "IP_CHANGE"
    DEVICE_CHANGE = "DEVICE_CHANGE"
    UNUSUAL_TRANSACTION = "UNUSUAL_TRANSACTION"


class AlertSeverity(str, Enum):
    """
    Alert severity bands.

    Ordered LOW < MEDIUM < HIGH < CRITICAL.
    """
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class FraudAlert(BaseModel):
    """A persisted, human-reviewable fraud alert."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    alert_type: AlertType
    severity: AlertSeverity
    description: str = Field(
        ...,
        description="Triggering reasons joined with '; '",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Snapshot of contributing signals",
    )
    risk_score: int = Field(..., ge=0, le=100)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    related_transaction_id: Optional[str] = None

    # Review workflow
    is_resolved: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None

    created_at: datetime = Field(default_factory=_utc_now)


class AlertFilters(BaseModel):
    """Filters for listing alerts; all optional and AND-ed together."""
    user_id: Optional[str] = None
    alert_type: Optional[AlertType] = None
    severity: Optional[AlertSeverity] = None
    is_resolved: Optional[bool] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: int = Field(default=20, ge=1, le=500)
    offset: int = Field(default=0, ge=0)

    @field_validator("since", "until")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive bounds are read as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v


class AlertStats(BaseModel):
    """Counters for the review queue."""
    open_alerts: int = 0
    critical_open_alerts: int = 0
    resolved_today: int = 0


class AlertResolution(BaseModel):
    """Payload for resolving an alert."""
    resolved_by: str = Field(..., min_length=1)
    resolution: str = Field(..., min_length=1)


class PaymentMismatchRequest(BaseModel):
    """Settlement callback payload comparing expected and settled amounts."""
    user_id: str = Field(..., min_length=1)
    expected_amount: Decimal
    actual_amount: Decimal
    payment_method: str = Field(..., min_length=1)
    transaction_ref: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
