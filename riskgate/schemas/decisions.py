"""
Decision Schemas

Defines the structured reasons produced by each check and the
decision returned to the ingestion adapter. Reason codes, not the
human-readable messages, drive alert classification.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .alerts import AlertSeverity


class ReasonCode(str, Enum):
    """Machine-readable reason codes emitted by the checks."""
    BLACKLISTED_IP = "BLACKLISTED_IP"
    BLACKLISTED_DEVICE = "BLACKLISTED_DEVICE"
    VELOCITY_EXCEEDED = "VELOCITY_EXCEEDED"
    IMPOSSIBLE_TRAVEL = "IMPOSSIBLE_TRAVEL"
    NEW_DEVICE = "NEW_DEVICE"
    NEW_USER_AGENT = "NEW_USER_AGENT"
    FLAGGED_HISTORY = "FLAGGED_HISTORY"
    PAYMENT_MISMATCH = "PAYMENT_MISMATCH"


class RiskReason(BaseModel):
    """
    One triggered signal.

    Provides transparency into why a score was assigned.
    """
    code: ReasonCode = Field(
        ...,
        description="Machine-readable reason code",
    )
    message: str = Field(
        ...,
        description="Human-readable description",
    )
    score: int = Field(
        default=0,
        ge=0,
        description="Points this signal contributed",
    )
    triggered_by: Optional[str] = Field(
        default=None,
        description="Which check produced this reason",
    )


class RiskDecision(BaseModel):
    """
    Outcome of one evaluation.

    is_risky, risk_score, alerts and should_block form the contract
    consumed by the ingestion adapter; the rest is diagnostic.
    """
    is_risky: bool
    risk_score: int = Field(..., ge=0, le=100)
    alerts: list[str] = Field(
        default_factory=list,
        description="Messages of every triggered reason",
    )
    should_block: bool

    reasons: list[RiskReason] = Field(default_factory=list)
    severity: AlertSeverity = AlertSeverity.LOW
    activity_id: Optional[str] = None
    alert_id: Optional[str] = None
    failed_checks: list[str] = Field(default_factory=list)
    persisted: bool = True

    @property
    def reason_codes(self) -> set[ReasonCode]:
        return {r.code for r in self.reasons}
