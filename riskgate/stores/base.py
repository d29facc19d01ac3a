"""
Store Interfaces

Repositories the risk engine reads history from and writes results
to. The engine only depends on these interfaces, so the in-memory
implementation and the PostgreSQL implementation are interchangeable.

Required query surface:
- insert one row
- equality filters on user_id / activity_type / entity_type /
  entity_value / is_active / flagged
- created_at >= range predicate
- order by created_at descending with a row limit
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from ..schemas import (
    ActivityRecord,
    FraudAlert,
    AlertFilters,
    AlertStats,
    BlacklistEntry,
    EntityType,
)


class ActivityStore(ABC):
    """Append-only log of evaluated activities."""

    @abstractmethod
    async def insert_activity(self, record: ActivityRecord) -> None:
        """Append one activity record."""

    @abstractmethod
    async def count_activities(
        self,
        user_id: str,
        since: datetime,
        activity_type: Optional[str] = None,
        flagged: Optional[bool] = None,
    ) -> int:
        """
        Count a user's activities created at or after `since`.

        Args:
            user_id: User to count for
            since: Inclusive lower bound on created_at
            activity_type: Only count this activity type (optional)
            flagged: Only count records with this flag value (optional)
        """

    @abstractmethod
    async def recent_activities(
        self,
        user_id: str,
        limit: int,
        with_country: bool = False,
    ) -> list[ActivityRecord]:
        """
        Most recent activities for a user, newest first.

        Args:
            user_id: User to fetch for
            limit: Maximum number of records
            with_country: Only records whose location has a country
        """


class AlertStore(ABC):
    """Fraud alerts awaiting or having passed review."""

    @abstractmethod
    async def insert_alert(self, alert: FraudAlert) -> None:
        """Persist a new alert."""

    @abstractmethod
    async def get_alert(self, alert_id: str) -> Optional[FraudAlert]:
        """Fetch one alert by id."""

    @abstractmethod
    async def list_alerts(self, filters: AlertFilters) -> list[FraudAlert]:
        """List alerts matching filters, newest first."""

    @abstractmethod
    async def resolve_alert(
        self,
        alert_id: str,
        resolved_by: str,
        resolution: str,
        resolved_at: datetime,
    ) -> Optional[FraudAlert]:
        """Mark an alert resolved. Returns None if it does not exist."""

    @abstractmethod
    async def alert_stats(self, now: datetime) -> AlertStats:
        """Counters for the review queue."""


class BlacklistStore(ABC):
    """Globally banned entities."""

    @abstractmethod
    async def insert_blacklist_entry(self, entry: BlacklistEntry) -> None:
        """Append one entry. Duplicates are allowed."""

    @abstractmethod
    async def find_blacklist_entries(
        self,
        entity_type: EntityType,
        entity_value: str,
        active_only: bool = True,
    ) -> list[BlacklistEntry]:
        """Entries for an exact entity type and value."""

    @abstractmethod
    async def list_blacklist(
        self,
        entity_type: Optional[EntityType] = None,
        active_only: bool = False,
    ) -> list[BlacklistEntry]:
        """List entries, newest first."""

    @abstractmethod
    async def deactivate_blacklist_entry(self, entry_id: str) -> bool:
        """Deactivate an entry. Returns False if it does not exist."""


class EvaluationRecorder(ABC):
    """
    Writes the outcome of one evaluation.

    The activity record and its optional alert are written atomically,
    so an alert is never lost once its activity is committed.
    """

    @abstractmethod
    async def record_evaluation(
        self,
        activity: ActivityRecord,
        alert: Optional[FraudAlert] = None,
    ) -> None:
        """Persist the activity and, if given, its alert in one unit."""


class RiskStore(ActivityStore, AlertStore, BlacklistStore, EvaluationRecorder):
    """A backend implementing every repository the engine needs."""

    async def initialize(self) -> None:
        """Open connections / create schema. No-op by default."""

    async def close(self) -> None:
        """Release connections. No-op by default."""

    @abstractmethod
    async def health_check(self) -> bool:
        """True if the backend is reachable."""
