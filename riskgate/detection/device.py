"""
Device Anomaly Detection

Compares the activity's device fingerprint and user agent with those
seen in the user's most recent activities. Each unseen value adds its
own points.
"""

from datetime import datetime

from ..config import settings
from ..schemas import ActivityInput, ReasonCode
from ..stores import ActivityStore
from .base import BaseCheck, CheckResult


class DeviceAnomalyCheck(BaseCheck):
    """Flags unseen device fingerprints and user agents."""

    def __init__(
        self,
        activities: ActivityStore,
        lookback_records: int = None,
        new_device_score: int = None,
        new_user_agent_score: int = None,
    ):
        self.activities = activities
        self.lookback_records = (
            lookback_records if lookback_records is not None else settings.device_lookback_records
        )
        self.new_device_score = (
            new_device_score if new_device_score is not None else settings.new_device_score
        )
        self.new_user_agent_score = (
            new_user_agent_score if new_user_agent_score is not None else settings.new_user_agent_score
        )

    async def check(self, activity: ActivityInput, now: datetime) -> CheckResult:
        result = self.new_result()

        if not activity.device_fingerprint and not activity.user_agent:
            result.reached_store = False
            return result

        recent = await self.activities.recent_activities(
            activity.user_id,
            limit=self.lookback_records,
        )
        known_devices = {r.device_fingerprint for r in recent if r.device_fingerprint}
        known_user_agents = {r.user_agent for r in recent if r.user_agent}

        if activity.device_fingerprint and activity.device_fingerprint not in known_devices:
            result.add_reason(
                ReasonCode.NEW_DEVICE,
                "New device detected",
                self.new_device_score,
            )

        if activity.user_agent and activity.user_agent not in known_user_agents:
            result.add_reason(
                ReasonCode.NEW_USER_AGENT,
                "New user agent detected",
                self.new_user_agent_score,
            )

        return result
