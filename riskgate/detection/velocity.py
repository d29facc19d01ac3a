"""
Velocity Check

Counts a user's activities of the same type inside a sliding window.
Limits come from configuration (see config/velocity_limits.yaml);
activity types without a limit are never flagged.

The activity being evaluated counts toward its own window, so the
limit-th activity inside the window is the first one flagged.
"""

from datetime import datetime, timedelta
from typing import Optional

from ..config import settings, VelocityLimit, load_velocity_limits
from ..schemas import ActivityInput, ReasonCode
from ..stores import ActivityStore
from .base import BaseCheck, CheckResult


class VelocityCheck(BaseCheck):
    """Flags bursts of the same activity type from one user."""

    def __init__(
        self,
        activities: ActivityStore,
        limits: Optional[dict[str, VelocityLimit]] = None,
        score: int = None,
    ):
        """
        Initialize check.

        Args:
            activities: Activity history repository
            limits: Activity type -> limit (default: loaded from VELOCITY_LIMITS_PATH)
            score: Points when a limit is reached
        """
        self.activities = activities
        self.limits = limits if limits is not None else load_velocity_limits(settings.velocity_limits_path)
        self.score = score if score is not None else settings.velocity_score

    async def check(self, activity: ActivityInput, now: datetime) -> CheckResult:
        result = self.new_result()

        limit = self.limits.get(activity.activity_type)
        if limit is None:
            result.reached_store = False
            return result

        window_start = now - timedelta(minutes=limit.window_minutes)
        previous = await self.activities.count_activities(
            activity.user_id,
            since=window_start,
            activity_type=activity.activity_type,
        )
        count = previous + 1

        if count >= limit.count:
            result.add_reason(
                ReasonCode.VELOCITY_EXCEEDED,
                f"High velocity: {count} {activity.activity_type} activities "
                f"in {limit.window_minutes} minutes",
                self.score,
            )

        return result
