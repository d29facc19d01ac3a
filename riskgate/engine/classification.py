"""
Score Classification

Maps a 0-100 risk score to severity bands and the triggered reason
codes to an alert type.

    score:    0 ---- 30 ---- 60 ---- 80 ---- 95 ---- 100
    band:       LOW    MEDIUM        HIGH    CRITICAL
    decision:                risky ------------------>
                                             block -->
"""

from dataclasses import dataclass
from typing import Iterable

from ..config import settings
from ..exceptions import ConfigurationError
from ..schemas import AlertSeverity, AlertType, ReasonCode


@dataclass(frozen=True)
class RiskThresholds:
    """Score thresholds for severity bands and decisions."""
    low: int = 30
    medium: int = 60
    high: int = 80
    critical: int = 95

    def __post_init__(self):
        ordered = [self.low, self.medium, self.high, self.critical]
        if any(t < 0 or t > 100 for t in ordered):
            raise ConfigurationError(f"Thresholds must be within 0..100: {ordered}")
        if any(a >= b for a, b in zip(ordered, ordered[1:])):
            raise ConfigurationError(f"Thresholds must be strictly ascending: {ordered}")

    @classmethod
    def from_settings(cls) -> "RiskThresholds":
        return cls(
            low=settings.risk_threshold_low,
            medium=settings.risk_threshold_medium,
            high=settings.risk_threshold_high,
            critical=settings.risk_threshold_critical,
        )

    def is_risky(self, score: int) -> bool:
        return score >= self.medium

    def should_block(self, score: int) -> bool:
        return score >= self.critical

    def severity(self, score: int) -> AlertSeverity:
        """
        Severity for an alert at this score.

        Scores between the medium and high thresholds stay MEDIUM. LOW
        is only reachable below the medium threshold, where no alert is
        ever created.
        """
        if score >= self.critical:
            return AlertSeverity.CRITICAL
        if score >= self.high:
            return AlertSeverity.HIGH
        if score < self.medium:
            return AlertSeverity.LOW
        return AlertSeverity.MEDIUM


# First matching entry wins.
ALERT_TYPE_PRECEDENCE: list[tuple[ReasonCode, AlertType]] = [
    (ReasonCode.PAYMENT_MISMATCH, AlertType.PAYMENT_MISMATCH),
    (ReasonCode.VELOCITY_EXCEEDED, AlertType.VELOCITY_CHECK),
    (ReasonCode.IMPOSSIBLE_TRAVEL, AlertType.IP_CHANGE),
    (ReasonCode.NEW_DEVICE, AlertType.DEVICE_CHANGE),
]


def derive_alert_type(codes: Iterable[ReasonCode]) -> AlertType:
    """Alert type for a set of triggered reason codes."""
    fired = set(codes)
    for code, alert_type in ALERT_TYPE_PRECEDENCE:
        if code in fired:
            return alert_type
    return AlertType.SUSPICIOUS_ACTIVITY
