# Data schemas for riskgate
from .activities import ActivityType, Location, ActivityInput, ActivityRecord
from .alerts import (
    AlertType,
    AlertSeverity,
    FraudAlert,
    AlertFilters,
    AlertStats,
    AlertResolution,
    PaymentMismatchRequest,
)
from .blacklist import EntityType, BlacklistEntry, BlacklistRequest
from .decisions import ReasonCode, RiskReason, RiskDecision

__all__ = [
    # Activities
    "ActivityType",
    "Location",
    "ActivityInput",
    "ActivityRecord",
    # Alerts
    "AlertType",
    "AlertSeverity",
    "FraudAlert",
    "AlertFilters",
    "AlertStats",
    "AlertResolution",
    "PaymentMismatchRequest",
    # Blacklist
    "EntityType",
    "BlacklistEntry",
    "BlacklistRequest",
    # Decisions
    "ReasonCode",
    "RiskReason",
    "RiskDecision",
]
