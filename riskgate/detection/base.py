"""
Check Contract

Every check scores one activity independently from the others,
reading whatever history it needs from the stores. Checks never
write; the engine owns persistence.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..schemas import ActivityInput, ReasonCode, RiskReason


@dataclass
class CheckResult:
    """
    Result from a check.

    score is the sum of the points of every reason added. reached_store
    is False when the check returned without reading any store.
    """
    score: int = 0
    reasons: list[RiskReason] = field(default_factory=list)
    source: Optional[str] = None
    reached_store: bool = True

    def add_reason(
        self,
        code: ReasonCode,
        message: str,
        score: int,
    ) -> None:
        """Add a triggered signal and its points."""
        self.score += score
        self.reasons.append(
            RiskReason(
                code=code,
                message=message,
                score=score,
                triggered_by=self.source,
            )
        )

    @property
    def triggered(self) -> bool:
        return bool(self.reasons)


class BaseCheck(ABC):
    """
    Base class for all risk checks.

    - BlacklistCheck: banned IP / device
    - VelocityCheck: too many activities of one type in a window
    - LocationAnomalyCheck: country change too soon after the last one
    - DeviceAnomalyCheck: unseen device fingerprint / user agent
    - BehaviorHistoryCheck: recently flagged activity
    """

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def new_result(self) -> CheckResult:
        return CheckResult(source=self.name)

    @abstractmethod
    async def check(
        self,
        activity: ActivityInput,
        now: datetime,
    ) -> CheckResult:
        """
        Score an activity.

        Args:
            activity: Activity being evaluated
            now: Evaluation time

        Returns:
            CheckResult with points and reasons
        """
        pass
