"""
PostgreSQL Store

Persists activities, alerts and blacklist entries in PostgreSQL via
SQLAlchemy's async engine (asyncpg driver). Queries are plain SQL
through `text()`; JSON columns are written with CAST(... AS jsonb).

Tables:
- user_activities: append-only activity log (history for the checks)
- fraud_alerts: alerts for review
- blacklisted_entities: banned IPs, devices, emails, phones, accounts
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, UTC
from typing import Any, AsyncIterator, Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from ..exceptions import StoreError, StoreUnavailableError
from ..schemas import (
    ActivityRecord,
    FraudAlert,
    AlertFilters,
    AlertStats,
    AlertSeverity,
    BlacklistEntry,
    EntityType,
    Location,
)
from .base import RiskStore

logger = logging.getLogger("riskgate.stores")


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS user_activities (
        id uuid PRIMARY KEY,
        user_id text NOT NULL,
        activity_type text NOT NULL,
        ip_address text,
        user_agent text,
        device_fingerprint text,
        location jsonb,
        session_id text,
        risk_score integer NOT NULL DEFAULT 0 CHECK (risk_score BETWEEN 0 AND 100),
        flagged boolean NOT NULL DEFAULT false,
        metadata jsonb,
        created_at timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_user_activities_user_created
        ON user_activities (user_id, created_at DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS fraud_alerts (
        id uuid PRIMARY KEY,
        user_id text NOT NULL,
        alert_type text NOT NULL,
        severity text NOT NULL,
        description text NOT NULL,
        metadata jsonb,
        is_resolved boolean NOT NULL DEFAULT false,
        resolved_by text,
        resolved_at timestamptz,
        resolution text,
        ip_address text,
        user_agent text,
        related_transaction_id text,
        risk_score integer NOT NULL DEFAULT 0,
        created_at timestamptz NOT NULL DEFAULT now(),
        updated_at timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_fraud_alerts_created
        ON fraud_alerts (created_at DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS blacklisted_entities (
        id uuid PRIMARY KEY,
        entity_type text NOT NULL,
        entity_value text NOT NULL,
        reason text NOT NULL,
        added_by text NOT NULL,
        is_active boolean NOT NULL DEFAULT true,
        expires_at timestamptz,
        created_at timestamptz NOT NULL DEFAULT now(),
        updated_at timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_blacklisted_entities_lookup
        ON blacklisted_entities (entity_type, entity_value)
    """,
]

INSERT_ACTIVITY = text("""
    INSERT INTO user_activities (
        id, user_id, activity_type, ip_address, user_agent,
        device_fingerprint, location, session_id, risk_score,
        flagged, metadata, created_at
    ) VALUES (
        :id, :user_id, :activity_type, :ip_address, :user_agent,
        :device_fingerprint, CAST(:location AS jsonb), :session_id, :risk_score,
        :flagged, CAST(:metadata AS jsonb), :created_at
    )
""")

INSERT_ALERT = text("""
    INSERT INTO fraud_alerts (
        id, user_id, alert_type, severity, description, metadata,
        is_resolved, ip_address, user_agent, related_transaction_id,
        risk_score, created_at, updated_at
    ) VALUES (
        :id, :user_id, :alert_type, :severity, :description, CAST(:metadata AS jsonb),
        :is_resolved, :ip_address, :user_agent, :related_transaction_id,
        :risk_score, :created_at, :created_at
    )
""")

INSERT_BLACKLIST = text("""
    INSERT INTO blacklisted_entities (
        id, entity_type, entity_value, reason, added_by,
        is_active, expires_at, created_at, updated_at
    ) VALUES (
        :id, :entity_type, :entity_value, :reason, :added_by,
        :is_active, :expires_at, :created_at, :created_at
    )
""")

_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, ConnectionError, OSError)


def _json_dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _json_loads(value: Any) -> Any:
    if value is None or isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _is_uuid(value: str) -> bool:
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True


class PostgresStore(RiskStore):
    """
    RiskStore backed by PostgreSQL.

    Every call opens a short-lived session from the pool; the server
    side statement_timeout bounds how long any store call can block.
    """

    def __init__(
        self,
        database_url: str,
        statement_timeout_ms: int = 2000,
        echo: bool = False,
    ):
        """
        Initialize store.

        Args:
            database_url: PostgreSQL connection URL (postgresql+asyncpg://...)
            statement_timeout_ms: Per-statement server timeout
            echo: Log emitted SQL
        """
        self.database_url = database_url
        self.statement_timeout_ms = statement_timeout_ms
        self.echo = echo
        self.engine = None
        self.session_factory = None

    async def initialize(self, create_schema: bool = True) -> None:
        """Create the connection pool and, optionally, the tables."""
        self.engine = create_async_engine(
            self.database_url,
            echo=self.echo,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            connect_args={
                "server_settings": {"statement_timeout": str(self.statement_timeout_ms)},
            },
        )
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        if create_schema:
            await self.create_schema()

    async def create_schema(self) -> None:
        async with self._session() as session:
            for statement in SCHEMA_STATEMENTS:
                await session.execute(text(statement))
            await session.commit()

    async def close(self) -> None:
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()

    async def health_check(self) -> bool:
        """Check database connectivity."""
        async with self._session() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Open a session, translating driver errors into store errors."""
        if not self.session_factory:
            raise StoreUnavailableError("Database not initialized")

        try:
            async with self.session_factory() as session:
                yield session
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailableError(str(e)) from e
        except (DBAPIError, SQLAlchemyError) as e:
            raise StoreError(str(e)) from e

    # =========================================================================
    # Row mapping
    # =========================================================================

    @staticmethod
    def _activity_params(record: ActivityRecord) -> dict[str, Any]:
        return {
            "id": record.id,
            "user_id": record.user_id,
            "activity_type": record.activity_type,
            "ip_address": record.ip_address,
            "user_agent": record.user_agent,
            "device_fingerprint": record.device_fingerprint,
            "location": _json_dumps(record.location.model_dump() if record.location else None),
            "session_id": record.session_id,
            "risk_score": record.risk_score,
            "flagged": record.flagged,
            "metadata": _json_dumps(record.metadata),
            "created_at": record.created_at,
        }

    @staticmethod
    def _alert_params(alert: FraudAlert) -> dict[str, Any]:
        return {
            "id": alert.id,
            "user_id": alert.user_id,
            "alert_type": alert.alert_type.value,
            "severity": alert.severity.value,
            "description": alert.description,
            "metadata": _json_dumps(alert.metadata),
            "is_resolved": alert.is_resolved,
            "ip_address": alert.ip_address,
            "user_agent": alert.user_agent,
            "related_transaction_id": alert.related_transaction_id,
            "risk_score": alert.risk_score,
            "created_at": alert.created_at,
        }

    @staticmethod
    def _row_to_activity(row: Any) -> ActivityRecord:
        location = _json_loads(row["location"])
        return ActivityRecord(
            id=str(row["id"]),
            user_id=row["user_id"],
            activity_type=row["activity_type"],
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            device_fingerprint=row["device_fingerprint"],
            location=Location(**location) if location else None,
            session_id=row["session_id"],
            risk_score=int(row["risk_score"]),
            flagged=bool(row["flagged"]),
            metadata=_json_loads(row["metadata"]) or {},
            created_at=_as_utc(row["created_at"]),
        )

    @staticmethod
    def _row_to_alert(row: Any) -> FraudAlert:
        return FraudAlert(
            id=str(row["id"]),
            user_id=row["user_id"],
            alert_type=row["alert_type"],
            severity=row["severity"],
            description=row["description"],
            metadata=_json_loads(row["metadata"]) or {},
            risk_score=int(row["risk_score"]),
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            related_transaction_id=row["related_transaction_id"],
            is_resolved=bool(row["is_resolved"]),
            resolved_by=row["resolved_by"],
            resolved_at=_as_utc(row["resolved_at"]),
            resolution=row["resolution"],
            created_at=_as_utc(row["created_at"]),
        )

    @staticmethod
    def _row_to_blacklist(row: Any) -> BlacklistEntry:
        return BlacklistEntry(
            id=str(row["id"]),
            entity_type=row["entity_type"],
            entity_value=row["entity_value"],
            reason=row["reason"],
            added_by=row["added_by"],
            is_active=bool(row["is_active"]),
            expires_at=_as_utc(row["expires_at"]),
            created_at=_as_utc(row["created_at"]),
        )

    # =========================================================================
    # Activities
    # =========================================================================

    async def insert_activity(self, record: ActivityRecord) -> None:
        async with self._session() as session:
            await session.execute(INSERT_ACTIVITY, self._activity_params(record))
            await session.commit()

    async def count_activities(
        self,
        user_id: str,
        since: datetime,
        activity_type: Optional[str] = None,
        flagged: Optional[bool] = None,
    ) -> int:
        clauses = ["user_id = :user_id", "created_at >= :since"]
        params: dict[str, Any] = {"user_id": user_id, "since": since}
        if activity_type is not None:
            clauses.append("activity_type = :activity_type")
            params["activity_type"] = activity_type
        if flagged is not None:
            clauses.append("flagged = :flagged")
            params["flagged"] = flagged

        query = text(
            "SELECT count(*) FROM user_activities WHERE " + " AND ".join(clauses)
        )
        async with self._session() as session:
            result = await session.execute(query, params)
            return int(result.scalar() or 0)

    async def recent_activities(
        self,
        user_id: str,
        limit: int,
        with_country: bool = False,
    ) -> list[ActivityRecord]:
        country_clause = " AND location->>'country' IS NOT NULL" if with_country else ""
        query = text(
            "SELECT * FROM user_activities WHERE user_id = :user_id"
            + country_clause
            + " ORDER BY created_at DESC LIMIT :limit"
        )
        async with self._session() as session:
            result = await session.execute(query, {"user_id": user_id, "limit": limit})
            return [self._row_to_activity(row) for row in result.mappings().all()]

    # =========================================================================
    # Alerts
    # =========================================================================

    async def insert_alert(self, alert: FraudAlert) -> None:
        async with self._session() as session:
            await session.execute(INSERT_ALERT, self._alert_params(alert))
            await session.commit()

    async def get_alert(self, alert_id: str) -> Optional[FraudAlert]:
        if not _is_uuid(alert_id):
            return None
        async with self._session() as session:
            result = await session.execute(
                text("SELECT * FROM fraud_alerts WHERE id = :id"),
                {"id": alert_id},
            )
            row = result.mappings().first()
            return self._row_to_alert(row) if row else None

    async def list_alerts(self, filters: AlertFilters) -> list[FraudAlert]:
        clauses: list[str] = []
        params: dict[str, Any] = {"limit": filters.limit, "offset": filters.offset}
        if filters.user_id is not None:
            clauses.append("user_id = :user_id")
            params["user_id"] = filters.user_id
        if filters.alert_type is not None:
            clauses.append("alert_type = :alert_type")
            params["alert_type"] = filters.alert_type.value
        if filters.severity is not None:
            clauses.append("severity = :severity")
            params["severity"] = filters.severity.value
        if filters.is_resolved is not None:
            clauses.append("is_resolved = :is_resolved")
            params["is_resolved"] = filters.is_resolved
        if filters.since is not None:
            clauses.append("created_at >= :since")
            params["since"] = filters.since
        if filters.until is not None:
            clauses.append("created_at <= :until")
            params["until"] = filters.until

        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        query = text(
            "SELECT * FROM fraud_alerts" + where
            + " ORDER BY created_at DESC LIMIT :limit OFFSET :offset"
        )
        async with self._session() as session:
            result = await session.execute(query, params)
            return [self._row_to_alert(row) for row in result.mappings().all()]

    async def resolve_alert(
        self,
        alert_id: str,
        resolved_by: str,
        resolution: str,
        resolved_at: datetime,
    ) -> Optional[FraudAlert]:
        if not _is_uuid(alert_id):
            return None
        query = text("""
            UPDATE fraud_alerts
               SET is_resolved = true,
                   resolved_by = :resolved_by,
                   resolution = :resolution,
                   resolved_at = :resolved_at,
                   updated_at = :resolved_at
             WHERE id = :id
         RETURNING *
        """)
        async with self._session() as session:
            result = await session.execute(query, {
                "id": alert_id,
                "resolved_by": resolved_by,
                "resolution": resolution,
                "resolved_at": resolved_at,
            })
            row = result.mappings().first()
            await session.commit()
            return self._row_to_alert(row) if row else None

    async def alert_stats(self, now: datetime) -> AlertStats:
        start_of_day = now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
        query = text("""
            SELECT
                count(*) FILTER (WHERE NOT is_resolved) AS open_alerts,
                count(*) FILTER (WHERE NOT is_resolved AND severity = :critical) AS critical_open_alerts,
                count(*) FILTER (WHERE is_resolved AND resolved_at >= :start_of_day) AS resolved_today
            FROM fraud_alerts
        """)
        async with self._session() as session:
            result = await session.execute(query, {
                "critical": AlertSeverity.CRITICAL.value,
                "start_of_day": start_of_day,
            })
            row = result.mappings().first()

        if not row:
            return AlertStats()
        return AlertStats(
            open_alerts=int(row["open_alerts"] or 0),
            critical_open_alerts=int(row["critical_open_alerts"] or 0),
            resolved_today=int(row["resolved_today"] or 0),
        )

    # =========================================================================
    # Blacklist
    # =========================================================================

    async def insert_blacklist_entry(self, entry: BlacklistEntry) -> None:
        async with self._session() as session:
            await session.execute(INSERT_BLACKLIST, {
                "id": entry.id,
                "entity_type": entry.entity_type.value,
                "entity_value": entry.entity_value,
                "reason": entry.reason,
                "added_by": entry.added_by,
                "is_active": entry.is_active,
                "expires_at": entry.expires_at,
                "created_at": entry.created_at,
            })
            await session.commit()

    async def find_blacklist_entries(
        self,
        entity_type: EntityType,
        entity_value: str,
        active_only: bool = True,
    ) -> list[BlacklistEntry]:
        active_clause = " AND is_active = true" if active_only else ""
        query = text(
            "SELECT * FROM blacklisted_entities"
            " WHERE entity_type = :entity_type AND entity_value = :entity_value"
            + active_clause
        )
        async with self._session() as session:
            result = await session.execute(query, {
                "entity_type": entity_type.value,
                "entity_value": entity_value,
            })
            return [self._row_to_blacklist(row) for row in result.mappings().all()]

    async def list_blacklist(
        self,
        entity_type: Optional[EntityType] = None,
        active_only: bool = False,
    ) -> list[BlacklistEntry]:
        clauses: list[str] = []
        params: dict[str, Any] = {}
        if entity_type is not None:
            clauses.append("entity_type = :entity_type")
            params["entity_type"] = entity_type.value
        if active_only:
            clauses.append("is_active = true")

        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        query = text("SELECT * FROM blacklisted_entities" + where + " ORDER BY created_at DESC")
        async with self._session() as session:
            result = await session.execute(query, params)
            return [self._row_to_blacklist(row) for row in result.mappings().all()]

    async def deactivate_blacklist_entry(self, entry_id: str) -> bool:
        if not _is_uuid(entry_id):
            return False
        query = text("""
            UPDATE blacklisted_entities
               SET is_active = false, updated_at = now()
             WHERE id = :id
        """)
        async with self._session() as session:
            result = await session.execute(query, {"id": entry_id})
            await session.commit()
            return (result.rowcount or 0) > 0

    # =========================================================================
    # Evaluation recording
    # =========================================================================

    async def record_evaluation(
        self,
        activity: ActivityRecord,
        alert: Optional[FraudAlert] = None,
    ) -> None:
        """Insert activity and alert in a single transaction."""
        async with self._session() as session:
            async with session.begin():
                await session.execute(INSERT_ACTIVITY, self._activity_params(activity))
                if alert is not None:
                    await session.execute(INSERT_ALERT, self._alert_params(alert))
