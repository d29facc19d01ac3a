"""
Location Anomaly Detection ("impossible travel")

Coarse country-level heuristic: if the user's most recent located
activity was in a different country and happened less than the travel
window ago, the change is treated as implausible. No great-circle
distance or speed is computed.
"""

from datetime import datetime

from ..config import settings
from ..schemas import ActivityInput, ReasonCode
from ..stores import ActivityStore
from .base import BaseCheck, CheckResult


class LocationAnomalyCheck(BaseCheck):
    """Flags a country change inside the travel window."""

    def __init__(
        self,
        activities: ActivityStore,
        lookback_records: int = None,
        travel_window_hours: float = None,
        score: int = None,
    ):
        self.activities = activities
        self.lookback_records = (
            lookback_records if lookback_records is not None else settings.location_lookback_records
        )
        self.travel_window_hours = (
            travel_window_hours if travel_window_hours is not None else settings.location_travel_window_hours
        )
        self.score = score if score is not None else settings.location_score

    async def check(self, activity: ActivityInput, now: datetime) -> CheckResult:
        result = self.new_result()

        current_country = activity.location.country if activity.location else None
        if not current_country:
            result.reached_store = False
            return result

        located = await self.activities.recent_activities(
            activity.user_id,
            limit=self.lookback_records,
            with_country=True,
        )
        if not located:
            return result

        last = located[0]
        if last.country == current_country:
            return result

        hours = (now - last.created_at).total_seconds() / 3600
        if hours < self.travel_window_hours:
            result.add_reason(
                ReasonCode.IMPOSSIBLE_TRAVEL,
                f"Impossible travel detected: {last.country} to {current_country} "
                f"in {hours:.1f} hours",
                self.score,
            )

        return result
