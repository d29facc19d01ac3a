"""
In-Memory Store

Process-local implementation of every repository. Used by tests and
by single-process development deployments (STORE_BACKEND=memory).
"""

import asyncio
from datetime import datetime, UTC
from typing import Optional

from ..schemas import (
    ActivityRecord,
    FraudAlert,
    AlertFilters,
    AlertStats,
    AlertSeverity,
    BlacklistEntry,
    EntityType,
)
from .base import RiskStore


class InMemoryStore(RiskStore):
    """
    Lists guarded by a single asyncio lock.

    Records are kept in insertion order; reads sort by created_at so
    callers may insert back-dated history.
    """

    def __init__(self):
        self.activities: list[ActivityRecord] = []
        self.alerts: dict[str, FraudAlert] = {}
        self.blacklist: list[BlacklistEntry] = []
        self._lock = asyncio.Lock()

    async def health_check(self) -> bool:
        return True

    # =========================================================================
    # Activities
    # =========================================================================

    async def insert_activity(self, record: ActivityRecord) -> None:
        async with self._lock:
            self.activities.append(record)

    async def count_activities(
        self,
        user_id: str,
        since: datetime,
        activity_type: Optional[str] = None,
        flagged: Optional[bool] = None,
    ) -> int:
        count = 0
        for record in self.activities:
            if record.user_id != user_id or record.created_at < since:
                continue
            if activity_type is not None and record.activity_type != activity_type:
                continue
            if flagged is not None and record.flagged != flagged:
                continue
            count += 1
        return count

    async def recent_activities(
        self,
        user_id: str,
        limit: int,
        with_country: bool = False,
    ) -> list[ActivityRecord]:
        records = [
            r for r in self.activities
            if r.user_id == user_id and (not with_country or r.country)
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    # =========================================================================
    # Alerts
    # =========================================================================

    async def insert_alert(self, alert: FraudAlert) -> None:
        async with self._lock:
            self.alerts[alert.id] = alert

    async def get_alert(self, alert_id: str) -> Optional[FraudAlert]:
        return self.alerts.get(alert_id)

    async def list_alerts(self, filters: AlertFilters) -> list[FraudAlert]:
        matched = []
        for alert in self.alerts.values():
            if filters.user_id is not None and alert.user_id != filters.user_id:
                continue
            if filters.alert_type is not None and alert.alert_type != filters.alert_type:
                continue
            if filters.severity is not None and alert.severity != filters.severity:
                continue
            if filters.is_resolved is not None and alert.is_resolved != filters.is_resolved:
                continue
            if filters.since is not None and alert.created_at < filters.since:
                continue
            if filters.until is not None and alert.created_at > filters.until:
                continue
            matched.append(alert)

        matched.sort(key=lambda a: a.created_at, reverse=True)
        return matched[filters.offset:filters.offset + filters.limit]

    async def resolve_alert(
        self,
        alert_id: str,
        resolved_by: str,
        resolution: str,
        resolved_at: datetime,
    ) -> Optional[FraudAlert]:
        async with self._lock:
            alert = self.alerts.get(alert_id)
            if alert is None:
                return None
            resolved = alert.model_copy(update={
                "is_resolved": True,
                "resolved_by": resolved_by,
                "resolution": resolution,
                "resolved_at": resolved_at,
            })
            self.alerts[alert_id] = resolved
            return resolved

    async def alert_stats(self, now: datetime) -> AlertStats:
        start_of_day = now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
        stats = AlertStats()
        for alert in self.alerts.values():
            if not alert.is_resolved:
                stats.open_alerts += 1
                if alert.severity == AlertSeverity.CRITICAL:
                    stats.critical_open_alerts += 1
            elif alert.resolved_at is not None and alert.resolved_at >= start_of_day:
                stats.resolved_today += 1
        return stats

    # =========================================================================
    # Blacklist
    # =========================================================================

    async def insert_blacklist_entry(self, entry: BlacklistEntry) -> None:
        async with self._lock:
            self.blacklist.append(entry)

    async def find_blacklist_entries(
        self,
        entity_type: EntityType,
        entity_value: str,
        active_only: bool = True,
    ) -> list[BlacklistEntry]:
        return [
            e for e in self.blacklist
            if e.entity_type == entity_type
            and e.entity_value == entity_value
            and (e.is_active or not active_only)
        ]

    async def list_blacklist(
        self,
        entity_type: Optional[EntityType] = None,
        active_only: bool = False,
    ) -> list[BlacklistEntry]:
        entries = [
            e for e in self.blacklist
            if (entity_type is None or e.entity_type == entity_type)
            and (e.is_active or not active_only)
        ]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries

    async def deactivate_blacklist_entry(self, entry_id: str) -> bool:
        async with self._lock:
            for i, entry in enumerate(self.blacklist):
                if entry.id == entry_id:
                    self.blacklist[i] = entry.model_copy(update={"is_active": False})
                    return True
        return False

    # =========================================================================
    # Evaluation recording
    # =========================================================================

    async def record_evaluation(
        self,
        activity: ActivityRecord,
        alert: Optional[FraudAlert] = None,
    ) -> None:
        async with self._lock:
            self.activities.append(activity)
            if alert is not None:
                self.alerts[alert.id] = alert
