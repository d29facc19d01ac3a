"""
Risk Engine Tests

Tests for the RiskEngine orchestrator: score aggregation, classification,
recording, failure policy, blacklist administration and the payment
mismatch gate.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from riskgate.config import DEFAULT_VELOCITY_LIMITS
from riskgate.detection import BaseCheck, CheckResult
from riskgate.engine import LocalUserLock, RiskEngine, RiskThresholds, derive_alert_type
from riskgate.exceptions import (
    ConfigurationError,
    EvaluationError,
    StoreError,
    StoreUnavailableError,
)
from riskgate.schemas import (
    ActivityInput,
    ActivityType,
    AlertFilters,
    AlertSeverity,
    AlertType,
    EntityType,
    ReasonCode,
)
from riskgate.stores import InMemoryStore


# =============================================================================
# Stub Checks for Testing Engine Behavior
# =============================================================================

class FixedScoreCheck(BaseCheck):
    """Always adds the same reason."""

    def __init__(self, score: int, code: ReasonCode = ReasonCode.NEW_DEVICE):
        self.score = score
        self.code = code

    async def check(self, activity, now) -> CheckResult:
        result = self.new_result()
        result.add_reason(self.code, f"fixed {self.score}", self.score)
        return result


class FailingCheck(BaseCheck):
    """Raises an unexpected error."""

    async def check(self, activity, now) -> CheckResult:
        raise RuntimeError("check crashed")


class UnreachableStoreCheck(BaseCheck):
    """Fails the way a check does when the database is down."""

    async def check(self, activity, now) -> CheckResult:
        raise StoreUnavailableError("connection refused")


class SkippedCheck(BaseCheck):
    """Returns without reading any store."""

    async def check(self, activity, now) -> CheckResult:
        result = self.new_result()
        result.reached_store = False
        return result


class SlowCheck(BaseCheck):
    async def check(self, activity, now) -> CheckResult:
        await asyncio.sleep(5)
        return self.new_result()


class DownStore(InMemoryStore):
    """Every read and write fails as if the database were unreachable."""

    async def count_activities(self, *args, **kwargs):
        raise StoreUnavailableError("connection refused")

    async def recent_activities(self, *args, **kwargs):
        raise StoreUnavailableError("connection refused")

    async def find_blacklist_entries(self, *args, **kwargs):
        raise StoreUnavailableError("connection refused")

    async def record_evaluation(self, *args, **kwargs):
        raise StoreUnavailableError("connection refused")


def _engine(store, now, checks=None, **kwargs) -> RiskEngine:
    kwargs.setdefault("fail_open", True)
    kwargs.setdefault("check_timeout_seconds", 1.0)
    return RiskEngine.from_store(
        store,
        checks=checks,
        thresholds=RiskThresholds(),
        velocity_limits=dict(DEFAULT_VELOCITY_LIMITS),
        clock=lambda: now,
        **kwargs,
    )


# =============================================================================
# Classification
# =============================================================================

class TestRiskThresholds:
    """Tests for score bands and decisions."""

    @pytest.mark.parametrize("score,risky", [(0, False), (59, False), (60, True), (100, True)])
    def test_is_risky(self, score, risky):
        assert RiskThresholds().is_risky(score) is risky

    @pytest.mark.parametrize("score,block", [(60, False), (94, False), (95, True), (100, True)])
    def test_should_block(self, score, block):
        assert RiskThresholds().should_block(score) is block

    @pytest.mark.parametrize("score,severity", [
        (10, AlertSeverity.LOW),
        (59, AlertSeverity.LOW),
        (60, AlertSeverity.MEDIUM),
        (75, AlertSeverity.MEDIUM),
        (80, AlertSeverity.HIGH),
        (94, AlertSeverity.HIGH),
        (95, AlertSeverity.CRITICAL),
    ])
    def test_severity_bands(self, score, severity):
        assert RiskThresholds().severity(score) == severity

    def test_thresholds_must_ascend(self):
        with pytest.raises(ConfigurationError):
            RiskThresholds(low=30, medium=90, high=80, critical=95)

    def test_thresholds_within_range(self):
        with pytest.raises(ConfigurationError):
            RiskThresholds(critical=101)


class TestAlertTypeDerivation:
    """Alert type comes from reason codes, first match wins."""

    def test_velocity_wins_over_travel_and_device(self):
        codes = [ReasonCode.NEW_DEVICE, ReasonCode.IMPOSSIBLE_TRAVEL, ReasonCode.VELOCITY_EXCEEDED]
        assert derive_alert_type(codes) == AlertType.VELOCITY_CHECK

    def test_travel_wins_over_device(self):
        codes = [ReasonCode.NEW_DEVICE, ReasonCode.IMPOSSIBLE_TRAVEL]
        assert derive_alert_type(codes) == AlertType.IP_CHANGE

    def test_new_device(self):
        assert derive_alert_type([ReasonCode.NEW_DEVICE]) == AlertType.DEVICE_CHANGE

    def test_payment_mismatch(self):
        codes = [ReasonCode.VELOCITY_EXCEEDED, ReasonCode.PAYMENT_MISMATCH]
        assert derive_alert_type(codes) == AlertType.PAYMENT_MISMATCH

    def test_blacklist_only_is_suspicious(self):
        codes = [ReasonCode.BLACKLISTED_IP, ReasonCode.BLACKLISTED_DEVICE, ReasonCode.NEW_USER_AGENT]
        assert derive_alert_type(codes) == AlertType.SUSPICIOUS_ACTIVITY


# =============================================================================
# Evaluation scenarios
# =============================================================================

class TestEvaluateScenarios:
    """End-to-end evaluations with the five standard checks."""

    @pytest.mark.asyncio
    async def test_tenth_login_scores_velocity_only(self, engine, store, sample_activity, make_record):
        """10th LOGIN within 60 minutes, nothing else: score 30, no alert."""
        for i in range(9):
            await store.insert_activity(make_record(sample_activity, minutes_ago=5 + i * 5))

        decision = await engine.evaluate(sample_activity)

        assert decision.risk_score == 30
        assert decision.is_risky is False
        assert decision.should_block is False
        assert decision.reason_codes == {ReasonCode.VELOCITY_EXCEEDED}
        assert store.alerts == {}
        assert len(store.activities) == 10
        latest = store.activities[-1]
        assert latest.flagged is False
        assert latest.risk_score == 30
        assert latest.id == decision.activity_id

    @pytest.mark.asyncio
    async def test_blacklisted_ip_with_new_device_and_agent(self, engine, store, sample_activity):
        """50 + 15 + 10 = 75: risky, not blocked, MEDIUM alert."""
        activity = sample_activity.model_copy(update={"location": None})
        await engine.add_to_blacklist(EntityType.IP, "203.0.113.10", "abuse", "admin_1")

        decision = await engine.evaluate(activity)

        assert decision.risk_score == 75
        assert decision.is_risky is True
        assert decision.should_block is False
        assert len(decision.alerts) == 3

        assert len(store.alerts) == 1
        alert = store.alerts[decision.alert_id]
        assert alert.severity == AlertSeverity.MEDIUM
        assert alert.alert_type == AlertType.DEVICE_CHANGE
        assert alert.risk_score == 75
        assert alert.description == (
            "IP address is blacklisted; New device detected; New user agent detected"
        )
        assert store.activities[-1].flagged is True

    @pytest.mark.asyncio
    async def test_score_is_clamped_and_blocked(self, engine, store, sample_activity):
        """50 + 40 + 15 = 105 is clamped to 100 and blocked as CRITICAL."""
        activity = sample_activity.model_copy(update={"user_agent": None, "location": None})
        await engine.add_to_blacklist(EntityType.IP, "203.0.113.10", "abuse", "admin_1")
        await engine.add_to_blacklist(EntityType.DEVICE, "fp_known", "abuse", "admin_1")

        decision = await engine.evaluate(activity)

        assert decision.risk_score == 100
        assert decision.should_block is True
        assert decision.is_risky is True
        assert decision.severity == AlertSeverity.CRITICAL
        assert store.alerts[decision.alert_id].severity == AlertSeverity.CRITICAL
        assert store.activities[-1].risk_score == 100

    @pytest.mark.asyncio
    async def test_solitary_ip_blacklist_match(self, engine, store, sample_activity, make_record):
        """A blacklisted IP alone scores 50 and is not risky."""
        await store.insert_activity(make_record(sample_activity, minutes_ago=600))
        await engine.add_to_blacklist(EntityType.IP, "203.0.113.10", "abuse", "admin_1")

        decision = await engine.evaluate(sample_activity)

        assert decision.risk_score == 50
        assert decision.is_risky is False
        assert decision.alert_id is None

    @pytest.mark.asyncio
    async def test_flagged_history_feeds_back(self, engine, store, sample_activity, make_record):
        """A risky evaluation flags its record, which later evaluations score."""
        await store.insert_activity(make_record(sample_activity, minutes_ago=600, flagged=True))

        decision = await engine.evaluate(sample_activity)

        assert decision.risk_score == 5
        assert decision.reason_codes == {ReasonCode.FLAGGED_HISTORY}

    @pytest.mark.asyncio
    async def test_alert_metadata_snapshot(self, engine, store, sample_activity):
        """Alerts carry the request context and reason codes."""
        await engine.add_to_blacklist(EntityType.IP, "203.0.113.10", "abuse", "admin_1")

        decision = await engine.evaluate(sample_activity)

        alert = store.alerts[decision.alert_id]
        assert alert.ip_address == "203.0.113.10"
        assert alert.user_agent == sample_activity.user_agent
        assert alert.metadata["activity_type"] == "LOGIN"
        assert alert.metadata["endpoint"] == "/auth/login"
        assert alert.metadata["location"]["country"] == "US"
        assert "BLACKLISTED_IP" in alert.metadata["reason_codes"]


class TestEvaluateAggregation:
    """Tests for aggregation with stub checks."""

    @pytest.mark.asyncio
    async def test_scores_are_summed(self, store, now, sample_activity):
        engine = _engine(store, now, checks=[FixedScoreCheck(20), FixedScoreCheck(45)])

        decision = await engine.evaluate(sample_activity)

        assert decision.risk_score == 65
        assert decision.is_risky is True

    @pytest.mark.asyncio
    async def test_no_checks(self, store, now, sample_activity):
        engine = _engine(store, now, checks=[])

        decision = await engine.evaluate(sample_activity)

        assert decision.risk_score == 0
        assert len(store.activities) == 1

    @pytest.mark.asyncio
    async def test_every_evaluation_is_recorded(self, engine, store, sample_activity):
        """Non-risky activities are recorded too."""
        for _ in range(3):
            await engine.evaluate(sample_activity)

        assert len(store.activities) == 3


# =============================================================================
# Failure policy
# =============================================================================

class TestFailurePolicy:
    """Tests for fail-open / fail-closed behavior."""

    @pytest.mark.asyncio
    async def test_failing_check_contributes_nothing(self, store, now, sample_activity):
        """A crashing check is dropped; the rest still score."""
        engine = _engine(store, now, checks=[FailingCheck(), FixedScoreCheck(20)])

        decision = await engine.evaluate(sample_activity)

        assert decision.risk_score == 20
        assert decision.failed_checks == ["FailingCheck"]
        assert len(store.activities) == 1

    @pytest.mark.asyncio
    async def test_slow_check_times_out(self, store, now, sample_activity):
        """A check exceeding its timeout counts as failed."""
        engine = _engine(
            store, now,
            checks=[SlowCheck(), FixedScoreCheck(10)],
            check_timeout_seconds=0.05,
        )

        decision = await engine.evaluate(sample_activity)

        assert decision.risk_score == 10
        assert decision.failed_checks == ["SlowCheck"]

    def test_explicit_zero_timeout_is_kept(self, store, now):
        engine = _engine(store, now, checks=[], check_timeout_seconds=0)

        assert engine.check_timeout_seconds == 0

    @pytest.mark.asyncio
    async def test_store_unreachable_for_every_check(self, store, now, sample_activity):
        """Complete inability to reach the store is surfaced."""
        engine = _engine(store, now, checks=[UnreachableStoreCheck(), UnreachableStoreCheck()])

        with pytest.raises(StoreUnavailableError):
            await engine.evaluate(sample_activity)

        assert store.activities == []

    @pytest.mark.asyncio
    async def test_partial_store_outage_is_tolerated(self, store, now, sample_activity):
        engine = _engine(store, now, checks=[UnreachableStoreCheck(), FixedScoreCheck(5)])

        decision = await engine.evaluate(sample_activity)

        assert decision.risk_score == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fail_open", [True, False])
    async def test_total_outage_without_location(self, now, fail_open):
        """Checks that skip the store do not hide a full outage."""
        engine = _engine(DownStore(), now, fail_open=fail_open)
        activity = ActivityInput(
            user_id="user_123",
            activity_type=ActivityType.LOGIN,
            ip_address="203.0.113.10",
            user_agent="Mozilla/5.0",
            device_fingerprint="fp_known",
        )

        with pytest.raises(StoreUnavailableError):
            await engine.evaluate(activity)

    @pytest.mark.asyncio
    async def test_total_outage_for_type_without_velocity_limit(self, now):
        engine = _engine(DownStore(), now)
        activity = ActivityInput(
            user_id="user_123",
            activity_type=ActivityType.PROFILE_UPDATE,
            ip_address="203.0.113.10",
            user_agent="Mozilla/5.0",
            device_fingerprint="fp_known",
        )

        with pytest.raises(StoreUnavailableError):
            await engine.evaluate(activity)

    @pytest.mark.asyncio
    async def test_outage_with_no_store_reads_surfaces_on_write(self, now):
        """An activity no check reads for still fails when the write is unreachable."""
        engine = _engine(DownStore(), now, checks=[SkippedCheck()])

        with pytest.raises(StoreUnavailableError):
            await engine.evaluate(ActivityInput(user_id="user_123", activity_type="LOGIN"))

    @pytest.mark.asyncio
    async def test_write_outage_after_successful_reads_fails_open(self, store, now, sample_activity):
        engine = _engine(store, now, checks=[FixedScoreCheck(10)])
        engine.recorder = AsyncMock()
        engine.recorder.record_evaluation.side_effect = StoreUnavailableError("failover")

        decision = await engine.evaluate(sample_activity)

        assert decision.persisted is False

    @pytest.mark.asyncio
    async def test_fail_closed_raises_on_check_failure(self, store, now, sample_activity):
        engine = _engine(store, now, checks=[FailingCheck(), FixedScoreCheck(20)], fail_open=False)

        with pytest.raises(EvaluationError):
            await engine.evaluate(sample_activity)

        assert store.activities == []

    @pytest.mark.asyncio
    async def test_write_failure_fails_open(self, store, now, sample_activity):
        """A failed write still returns the decision, marked unpersisted."""
        engine = _engine(store, now, checks=[FixedScoreCheck(70)])
        engine.recorder = AsyncMock()
        engine.recorder.record_evaluation.side_effect = StoreError("disk full")

        decision = await engine.evaluate(sample_activity)

        assert decision.is_risky is True
        assert decision.persisted is False
        assert decision.activity_id is None
        assert decision.alert_id is None

    @pytest.mark.asyncio
    async def test_write_failure_fails_closed(self, store, now, sample_activity):
        engine = _engine(store, now, checks=[FixedScoreCheck(70)], fail_open=False)
        engine.recorder = AsyncMock()
        engine.recorder.record_evaluation.side_effect = StoreError("disk full")

        with pytest.raises(EvaluationError):
            await engine.evaluate(sample_activity)

    @pytest.mark.asyncio
    async def test_activity_and_alert_written_together(self, store, now, sample_activity):
        """The activity and its alert go through one atomic call."""
        engine = _engine(store, now, checks=[FixedScoreCheck(70)])
        engine.recorder = AsyncMock()

        decision = await engine.evaluate(sample_activity)

        engine.recorder.record_evaluation.assert_awaited_once()
        record, alert = engine.recorder.record_evaluation.await_args.args
        assert record.id == decision.activity_id
        assert record.flagged is True
        assert alert.id == decision.alert_id
        assert alert.user_id == record.user_id


# =============================================================================
# Per-user serialization
# =============================================================================

class TestUserLock:
    """Tests for serialized evaluations of one user."""

    @pytest.mark.asyncio
    async def test_concurrent_withdrawals_see_each_other(self, store, now, sample_activity, make_record):
        """With a user lock the third concurrent withdrawal is flagged."""
        activity = sample_activity.model_copy(update={"activity_type": "WITHDRAWAL"})
        await store.insert_activity(make_record(activity, minutes_ago=600))
        engine = _engine(store, now, user_lock=LocalUserLock(timeout_seconds=1.0))

        decisions = await asyncio.gather(*(engine.evaluate(activity) for _ in range(3)))

        flagged = [d for d in decisions if ReasonCode.VELOCITY_EXCEEDED in d.reason_codes]
        assert len(flagged) == 1
        assert len(store.activities) == 4


# =============================================================================
# Blacklist administration
# =============================================================================

class TestBlacklistAdministration:
    """Tests for add_to_blacklist and deactivation."""

    @pytest.mark.asyncio
    async def test_add_to_blacklist(self, engine, store, now):
        entry = await engine.add_to_blacklist(
            EntityType.EMAIL, "fraud@example.com", "chargebacks", "admin_1",
            expires_at=now + timedelta(days=30),
        )

        assert entry.is_active is True
        assert entry.created_at == now
        assert store.blacklist == [entry]

    @pytest.mark.asyncio
    async def test_duplicates_allowed(self, engine, store):
        await engine.add_to_blacklist(EntityType.IP, "198.51.100.7", "abuse", "admin_1")
        await engine.add_to_blacklist(EntityType.IP, "198.51.100.7", "abuse again", "admin_2")

        entries = await store.find_blacklist_entries(EntityType.IP, "198.51.100.7")
        assert len(entries) == 2

    @pytest.mark.asyncio
    async def test_deactivated_entry_stops_applying(self, engine, store, sample_activity, make_record):
        await store.insert_activity(make_record(sample_activity, minutes_ago=600))
        entry = await engine.add_to_blacklist(EntityType.IP, "203.0.113.10", "abuse", "admin_1")

        assert await engine.deactivate_blacklist_entry(entry.id) is True
        decision = await engine.evaluate(sample_activity)

        assert decision.risk_score == 0

    @pytest.mark.asyncio
    async def test_deactivate_unknown_entry(self, engine):
        assert await engine.deactivate_blacklist_entry("missing") is False


# =============================================================================
# Payment mismatch gate
# =============================================================================

class TestPaymentMismatch:
    """Tests for check_payment_mismatch."""

    @pytest.mark.asyncio
    async def test_mismatch_creates_alert(self, engine, store, now):
        alert = await engine.check_payment_mismatch("user_123", "100.00", "90.00", "card")

        assert alert is not None
        assert alert.alert_type == AlertType.PAYMENT_MISMATCH
        assert alert.severity == AlertSeverity.HIGH
        assert alert.risk_score == 75
        assert alert.description == "Payment amount mismatch: expected 100.00, received 90.00"
        assert alert.metadata["payment_method"] == "card"
        assert alert.metadata["difference"] == 10.0
        assert alert.created_at == now
        assert store.alerts == {alert.id: alert}

    @pytest.mark.asyncio
    async def test_difference_of_exactly_one_cent(self, engine, store):
        """Exactly 0.01 is within tolerance, even for float amounts."""
        alert = await engine.check_payment_mismatch("user_123", 10.00, 10.01, "card")

        assert alert is None
        assert store.alerts == {}

    @pytest.mark.asyncio
    async def test_just_over_one_cent(self, engine):
        alert = await engine.check_payment_mismatch("user_123", Decimal("10.00"), Decimal("10.011"), "card")

        assert alert is not None

    @pytest.mark.asyncio
    async def test_matching_amounts(self, engine, store):
        assert await engine.check_payment_mismatch("user_123", 25, 25, "upi") is None
        assert store.alerts == {}

    @pytest.mark.asyncio
    async def test_metadata_is_merged(self, engine):
        alert = await engine.check_payment_mismatch(
            "user_123", 50, 5, "wallet", {"gateway": "stripe"}
        )

        assert alert.metadata["gateway"] == "stripe"
        assert alert.metadata["expected_amount"] == 50.0

    @pytest.mark.asyncio
    async def test_log_payment_mismatch_links_transaction(self, engine):
        alert = await engine.log_payment_mismatch("user_123", 50, 5, "wallet", "txn_789")

        assert alert.related_transaction_id == "txn_789"
        assert alert.metadata["transaction_ref"] == "txn_789"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [float("nan"), float("inf"), "abc"])
    async def test_invalid_amounts_rejected(self, engine, amount):
        with pytest.raises(ValueError):
            await engine.check_payment_mismatch("user_123", amount, 10, "card")

    @pytest.mark.asyncio
    async def test_write_failure_fails_open(self, engine):
        engine.alerts = AsyncMock()
        engine.alerts.insert_alert.side_effect = StoreError("down")

        assert await engine.check_payment_mismatch("user_123", 100, 1, "card") is None


# =============================================================================
# Review workflow
# =============================================================================

class TestResolveAlert:
    """Tests for resolving alerts."""

    @pytest.mark.asyncio
    async def test_resolve_alert(self, engine, store, now):
        alert = await engine.check_payment_mismatch("user_123", 100, 1, "card")

        resolved = await engine.resolve_alert(alert.id, "analyst_7", "customer confirmed")

        assert resolved.is_resolved is True
        assert resolved.resolved_by == "analyst_7"
        assert resolved.resolved_at == now
        open_alerts = await store.list_alerts(AlertFilters(is_resolved=False))
        assert open_alerts == []

    @pytest.mark.asyncio
    async def test_resolve_unknown_alert(self, engine):
        assert await engine.resolve_alert("missing", "analyst_7", "n/a") is None
