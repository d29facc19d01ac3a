"""
Behavior History Check

Users with recently flagged activity carry that risk forward: every
flagged activity in the window adds a fixed number of points. The sum
is not capped here; the engine clamps the total.
"""

from datetime import datetime, timedelta

from ..config import settings
from ..schemas import ActivityInput, ReasonCode
from ..stores import ActivityStore
from .base import BaseCheck, CheckResult


class BehaviorHistoryCheck(BaseCheck):
    """Scores recently flagged history."""

    def __init__(
        self,
        activities: ActivityStore,
        window_days: int = None,
        score_per_flag: int = None,
    ):
        self.activities = activities
        self.window_days = window_days if window_days is not None else settings.flagged_history_window_days
        self.score_per_flag = (
            score_per_flag if score_per_flag is not None else settings.flagged_history_score
        )

    async def check(self, activity: ActivityInput, now: datetime) -> CheckResult:
        result = self.new_result()

        flagged = await self.activities.count_activities(
            activity.user_id,
            since=now - timedelta(days=self.window_days),
            flagged=True,
        )
        if flagged > 0:
            result.add_reason(
                ReasonCode.FLAGGED_HISTORY,
                f"User has {flagged} flagged activities in the last {self.window_days} days",
                flagged * self.score_per_flag,
            )

        return result
