"""
Blacklist Check

Looks up the activity's IP address and device fingerprint against
active blacklist entries. Missing fields skip their sub-check.
"""

from datetime import datetime

from ..config import settings
from ..schemas import ActivityInput, EntityType, ReasonCode
from ..stores import BlacklistStore
from .base import BaseCheck, CheckResult


class BlacklistCheck(BaseCheck):
    """Scores activities coming from banned IPs or devices."""

    def __init__(
        self,
        blacklist: BlacklistStore,
        ip_score: int = None,
        device_score: int = None,
        enforce_expiry: bool = None,
    ):
        """
        Initialize check.

        Args:
            blacklist: Blacklist repository
            ip_score: Points for a blacklisted IP
            device_score: Points for a blacklisted device
            enforce_expiry: Skip entries whose expires_at has passed
        """
        self.blacklist = blacklist
        self.ip_score = ip_score if ip_score is not None else settings.blacklist_ip_score
        self.device_score = device_score if device_score is not None else settings.blacklist_device_score
        self.enforce_expiry = (
            enforce_expiry if enforce_expiry is not None else settings.enforce_blacklist_expiry
        )

    async def check(self, activity: ActivityInput, now: datetime) -> CheckResult:
        result = self.new_result()

        if not activity.ip_address and not activity.device_fingerprint:
            result.reached_store = False
            return result

        if activity.ip_address and await self._is_blacklisted(EntityType.IP, activity.ip_address, now):
            result.add_reason(
                ReasonCode.BLACKLISTED_IP,
                "IP address is blacklisted",
                self.ip_score,
            )

        if activity.device_fingerprint and await self._is_blacklisted(
            EntityType.DEVICE, activity.device_fingerprint, now
        ):
            result.add_reason(
                ReasonCode.BLACKLISTED_DEVICE,
                "Device is blacklisted",
                self.device_score,
            )

        return result

    async def _is_blacklisted(self, entity_type: EntityType, value: str, now: datetime) -> bool:
        entries = await self.blacklist.find_blacklist_entries(entity_type, value, active_only=True)
        return any(entry.applies_at(now, self.enforce_expiry) for entry in entries)
