"""
Risk Engine

Orchestrates the check modules and turns their combined score into a
decision for the guarded action.

Evaluation flow:
1. Run every check concurrently against the same activity
2. Sum the points, clamped to 100
3. Classify: risky at >= medium threshold, block at >= critical
4. Record the activity (always) and an alert (if risky) atomically
5. Return the decision

A failing or timed out check contributes nothing and evaluation goes
on (fail-open at the check level). With fail_open disabled, check and
persistence failures raise EvaluationError instead.
"""

import asyncio
import logging
import math
import time
from datetime import datetime, UTC
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional, Union

from ..config import settings, VelocityLimit
from ..detection import (
    BaseCheck,
    BlacklistCheck,
    VelocityCheck,
    LocationAnomalyCheck,
    DeviceAnomalyCheck,
    BehaviorHistoryCheck,
)
from ..exceptions import EvaluationError, StoreUnavailableError
from ..metrics import metrics
from ..schemas import (
    ActivityInput,
    ActivityRecord,
    AlertSeverity,
    AlertType,
    BlacklistEntry,
    EntityType,
    FraudAlert,
    RiskDecision,
    RiskReason,
)
from ..stores import ActivityStore, AlertStore, BlacklistStore, EvaluationRecorder, RiskStore
from .classification import RiskThresholds, derive_alert_type
from .locks import NullUserLock, UserLock

logger = logging.getLogger("riskgate.engine")

Amount = Union[int, float, Decimal, str]


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class RiskEngine:
    """
    Injectable risk scoring service.

    Holds its repositories explicitly so tests can substitute the
    in-memory store, and so several engines with different policies
    can share one backend.
    """

    def __init__(
        self,
        activities: ActivityStore,
        alerts: AlertStore,
        blacklist: BlacklistStore,
        recorder: EvaluationRecorder,
        checks: Optional[list[BaseCheck]] = None,
        thresholds: Optional[RiskThresholds] = None,
        velocity_limits: Optional[dict[str, VelocityLimit]] = None,
        fail_open: Optional[bool] = None,
        check_timeout_seconds: Optional[float] = None,
        user_lock: Optional[UserLock] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize engine.

        Args:
            activities: Activity history repository
            alerts: Alert repository
            blacklist: Blacklist repository
            recorder: Atomic writer for activity + alert
            checks: Check modules (default: the five standard checks)
            thresholds: Score thresholds (default: from settings)
            velocity_limits: Velocity limits for the default VelocityCheck
            fail_open: Failure policy (default: FAIL_OPEN setting)
            check_timeout_seconds: Per-check timeout
            user_lock: Per-user serialization (default: none)
            clock: Returns the current time (default: UTC now)
        """
        self.activities = activities
        self.alerts = alerts
        self.blacklist = blacklist
        self.recorder = recorder
        self.thresholds = thresholds or RiskThresholds.from_settings()
        self.fail_open = settings.fail_open if fail_open is None else fail_open
        self.check_timeout_seconds = (
            check_timeout_seconds if check_timeout_seconds is not None else settings.check_timeout_seconds
        )
        self.user_lock = user_lock or NullUserLock()
        self.clock = clock or _utc_now

        if checks is None:
            checks = [
                BlacklistCheck(blacklist),
                VelocityCheck(activities, limits=velocity_limits),
                LocationAnomalyCheck(activities),
                DeviceAnomalyCheck(activities),
                BehaviorHistoryCheck(activities),
            ]
        self.checks = checks

    @classmethod
    def from_store(cls, store: RiskStore, **kwargs: Any) -> "RiskEngine":
        """Build an engine whose repositories all live in one backend."""
        return cls(
            activities=store,
            alerts=store,
            blacklist=store,
            recorder=store,
            **kwargs,
        )

    # =========================================================================
    # Evaluation
    # =========================================================================

    async def evaluate(self, activity: ActivityInput) -> RiskDecision:
        """
        Score an activity and record the outcome.

        Raises:
            StoreUnavailableError: every check failed to reach the store
            EvaluationError: a check or write failed and fail_open is off
        """
        start_time = time.perf_counter()

        async with self.user_lock.hold(activity.user_id):
            decision = await self._evaluate(activity)

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        metrics.evaluation_latency.observe(elapsed_ms)
        metrics.risk_score_distribution.observe(decision.risk_score)
        if decision.should_block:
            outcome = "block"
        elif decision.is_risky:
            outcome = "warn"
        else:
            outcome = "allow"
        metrics.evaluations_total.labels(outcome=outcome).inc()

        return decision

    async def _evaluate(self, activity: ActivityInput) -> RiskDecision:
        now = self.clock()

        reasons, raw_score, failed_checks, store_reached = await self.run_checks(activity, now)

        risk_score = min(100, raw_score)
        is_risky = self.thresholds.is_risky(risk_score)
        should_block = self.thresholds.should_block(risk_score)
        severity = self.thresholds.severity(risk_score)

        record = ActivityRecord.from_input(
            activity,
            risk_score=risk_score,
            flagged=is_risky,
            created_at=now,
        )
        alert = self._build_alert(activity, risk_score, severity, reasons, now) if is_risky else None

        persisted = await self._record(record, alert, store_reached)

        if should_block:
            logger.warning(
                "Blocking %s for user %s: score=%d reasons=%s",
                activity.activity_type,
                activity.user_id,
                risk_score,
                ",".join(r.code.value for r in reasons),
            )

        return RiskDecision(
            is_risky=is_risky,
            risk_score=risk_score,
            alerts=[r.message for r in reasons],
            should_block=should_block,
            reasons=reasons,
            severity=severity,
            activity_id=record.id if persisted else None,
            alert_id=alert.id if (alert and persisted) else None,
            failed_checks=failed_checks,
            persisted=persisted,
        )

    async def run_checks(
        self,
        activity: ActivityInput,
        now: datetime,
    ) -> tuple[list[RiskReason], int, list[str], bool]:
        """
        Run all checks concurrently.

        The store layer counts as unreachable when a check reported it
        unavailable and no other check completed a store read.

        Returns:
            Tuple of (reasons, raw_score, failed_check_names, store_reached)
        """
        tasks = [
            asyncio.wait_for(check.check(activity, now), timeout=self.check_timeout_seconds)
            for check in self.checks
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        reasons: list[RiskReason] = []
        raw_score = 0
        failed: list[str] = []
        unavailable = 0
        store_reached = False

        for check, result in zip(self.checks, results):
            if isinstance(result, BaseException):
                # Failed check contributes nothing
                failed.append(check.name)
                metrics.check_failures.labels(check=check.name).inc()
                if isinstance(result, StoreUnavailableError):
                    unavailable += 1
                logger.warning(
                    "Check %s failed for user %s: %r",
                    check.name,
                    activity.user_id,
                    result,
                )
                continue

            store_reached = store_reached or result.reached_store
            if result.triggered:
                metrics.check_triggers.labels(check=check.name).inc()
            raw_score += result.score
            reasons.extend(result.reasons)

        if unavailable and not store_reached:
            raise StoreUnavailableError("Store layer unreachable: no check could read it")

        if failed and not self.fail_open:
            raise EvaluationError(f"Checks failed: {', '.join(failed)}")

        return reasons, raw_score, failed, store_reached

    def _build_alert(
        self,
        activity: ActivityInput,
        risk_score: int,
        severity: AlertSeverity,
        reasons: list[RiskReason],
        now: datetime,
    ) -> FraudAlert:
        alert_type = derive_alert_type(r.code for r in reasons)
        snapshot = {
            "activity_type": activity.activity_type,
            "risk_score": risk_score,
            "ip_address": activity.ip_address,
            "user_agent": activity.user_agent,
            "location": activity.location.model_dump() if activity.location else None,
            "reason_codes": [r.code.value for r in reasons],
            **activity.metadata,
        }
        return FraudAlert(
            user_id=activity.user_id,
            alert_type=alert_type,
            severity=severity,
            description="; ".join(r.message for r in reasons),
            metadata=snapshot,
            risk_score=risk_score,
            ip_address=activity.ip_address,
            user_agent=activity.user_agent,
            created_at=now,
        )

    async def _record(
        self,
        record: ActivityRecord,
        alert: Optional[FraudAlert],
        store_reached: bool = True,
    ) -> bool:
        """
        Write the activity and alert; returns False if the write failed open.

        An unavailable store is re-raised when no check reached it either.
        """
        try:
            await self.recorder.record_evaluation(record, alert)
        except StoreUnavailableError as e:
            if not store_reached:
                metrics.persistence_failures.labels(kind="evaluation").inc()
                logger.error("Store layer unreachable for user %s: %s", record.user_id, e)
                raise
            return self._write_failed(record, alert, e)
        except Exception as e:
            return self._write_failed(record, alert, e)

        if alert is not None:
            metrics.alerts_total.labels(
                alert_type=alert.alert_type.value,
                severity=alert.severity.value,
            ).inc()
        return True

    def _write_failed(
        self,
        record: ActivityRecord,
        alert: Optional[FraudAlert],
        e: Exception,
    ) -> bool:
        metrics.persistence_failures.labels(kind="evaluation").inc()
        logger.error(
            "Recording evaluation for user %s failed (alert=%s): %s",
            record.user_id,
            alert.alert_type.value if alert else None,
            e,
        )
        if not self.fail_open:
            raise EvaluationError("Recording evaluation failed") from e
        return False

    # =========================================================================
    # Blacklist administration
    # =========================================================================

    async def add_to_blacklist(
        self,
        entity_type: EntityType,
        entity_value: str,
        reason: str,
        added_by: str,
        expires_at: Optional[datetime] = None,
    ) -> BlacklistEntry:
        """Append an active blacklist entry. Duplicates are allowed."""
        entry = BlacklistEntry(
            entity_type=entity_type,
            entity_value=entity_value,
            reason=reason,
            added_by=str(added_by),
            expires_at=expires_at,
            created_at=self.clock(),
        )
        await self.blacklist.insert_blacklist_entry(entry)
        logger.info(
            "Blacklisted %s %s (by %s): %s",
            entry.entity_type.value,
            entry.entity_value,
            entry.added_by,
            reason,
        )
        return entry

    async def deactivate_blacklist_entry(self, entry_id: str) -> bool:
        deactivated = await self.blacklist.deactivate_blacklist_entry(entry_id)
        if deactivated:
            logger.info("Deactivated blacklist entry %s", entry_id)
        return deactivated

    # =========================================================================
    # Payment mismatch gate
    # =========================================================================

    async def check_payment_mismatch(
        self,
        user_id: str,
        expected_amount: Amount,
        actual_amount: Amount,
        payment_method: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[FraudAlert]:
        """
        Raise a PAYMENT_MISMATCH alert when settled and expected amounts differ.

        Independent of evaluate(): called by payment settlement after the
        gateway confirms a charge.

        Returns:
            The created alert, or None if the amounts match (or the write
            failed open)

        Raises:
            ValueError: an amount is not a finite number
        """
        expected = _to_decimal(expected_amount)
        actual = _to_decimal(actual_amount)
        difference = abs(expected - actual)

        if difference <= Decimal(str(settings.payment_mismatch_tolerance)):
            return None

        metadata = dict(metadata or {})
        alert = FraudAlert(
            user_id=str(user_id),
            alert_type=AlertType.PAYMENT_MISMATCH,
            severity=AlertSeverity.HIGH,
            description=f"Payment amount mismatch: expected {expected}, received {actual}",
            metadata={
                "expected_amount": float(expected),
                "actual_amount": float(actual),
                "payment_method": payment_method,
                "difference": float(difference),
                **metadata,
            },
            risk_score=settings.payment_mismatch_risk_score,
            related_transaction_id=metadata.get("transaction_ref"),
            created_at=self.clock(),
        )

        try:
            await self.alerts.insert_alert(alert)
        except Exception as e:
            metrics.persistence_failures.labels(kind="payment_mismatch").inc()
            logger.error("Recording payment mismatch for user %s failed: %s", user_id, e)
            if not self.fail_open:
                raise EvaluationError("Recording payment mismatch failed") from e
            return None

        metrics.alerts_total.labels(
            alert_type=alert.alert_type.value,
            severity=alert.severity.value,
        ).inc()
        logger.warning(
            "Payment mismatch for user %s via %s: expected %s, received %s",
            user_id,
            payment_method,
            expected,
            actual,
        )
        return alert

    async def log_payment_mismatch(
        self,
        user_id: str,
        expected_amount: Amount,
        actual_amount: Amount,
        payment_method: str,
        transaction_ref: Optional[str] = None,
    ) -> Optional[FraudAlert]:
        """check_payment_mismatch with the gateway transaction reference attached."""
        return await self.check_payment_mismatch(
            user_id,
            expected_amount,
            actual_amount,
            payment_method,
            {"transaction_ref": transaction_ref},
        )

    # =========================================================================
    # Review workflow
    # =========================================================================

    async def resolve_alert(
        self,
        alert_id: str,
        resolved_by: str,
        resolution: str,
    ) -> Optional[FraudAlert]:
        return await self.alerts.resolve_alert(alert_id, resolved_by, resolution, self.clock())


def _to_decimal(amount: Amount) -> Decimal:
    if isinstance(amount, float) and not math.isfinite(amount):
        raise ValueError(f"Amount must be finite: {amount}")
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Amount is not a number: {amount!r}") from e
    if not value.is_finite():
        raise ValueError(f"Amount must be finite: {amount}")
    return value
