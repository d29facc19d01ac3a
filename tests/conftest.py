"""
Pytest Configuration and Fixtures

Provides shared fixtures for risk engine tests: an in-memory store, a
fixed clock and sample activities.
"""

from datetime import datetime, timedelta, UTC
from typing import Any, AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from riskgate.api.dependencies import get_engine, get_redis, get_store
from riskgate.api.main import app
from riskgate.config import DEFAULT_VELOCITY_LIMITS
from riskgate.engine import RiskEngine, RiskThresholds
from riskgate.schemas import ActivityInput, ActivityRecord, Location
from riskgate.stores import InMemoryStore


NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: unit tests (no infrastructure)")
    config.addinivalue_line("markers", "integration: integration tests (HTTP app, mocked database)")


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation time."""
    return NOW


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def engine(store: InMemoryStore, now: datetime) -> RiskEngine:
    """Engine with default thresholds and limits, fail-open, fixed clock."""
    return RiskEngine.from_store(
        store,
        thresholds=RiskThresholds(),
        velocity_limits=dict(DEFAULT_VELOCITY_LIMITS),
        fail_open=True,
        check_timeout_seconds=1.0,
        clock=lambda: now,
    )


@pytest.fixture
def sample_activity() -> ActivityInput:
    """
    A login from the user's usual device, browser and country.
    """
    return ActivityInput(
        user_id="user_123",
        activity_type="LOGIN",
        ip_address="203.0.113.10",
        user_agent="Mozilla/5.0 (Macintosh) Safari/17.0",
        device_fingerprint="fp_known",
        location=Location(country="US", city="New York"),
        session_id="sess_abc",
        metadata={"endpoint": "/auth/login", "method": "POST"},
    )


@pytest.fixture
def make_record(now: datetime) -> Callable[..., ActivityRecord]:
    """
    Factory for history records, created `minutes_ago` before NOW.

    Copies the request context of `activity`; keyword overrides win.
    """

    def _make(
        activity: ActivityInput,
        minutes_ago: float = 5,
        flagged: bool = False,
        risk_score: int = 0,
        **overrides: Any,
    ) -> ActivityRecord:
        base = activity.model_copy(update=overrides)
        return ActivityRecord.from_input(
            base,
            risk_score=risk_score,
            flagged=flagged,
            created_at=now - timedelta(minutes=minutes_ago),
        )

    return _make


@pytest_asyncio.fixture
async def api_client(
    engine: RiskEngine,
    store: InMemoryStore,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Get async HTTP client for API tests.

    Resources are injected through dependency overrides instead of the
    lifespan, so every test gets a fresh in-memory store.
    """
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_redis] = lambda: None

    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
