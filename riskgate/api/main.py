"""
Risk Gate API

FastAPI application exposing the risk engine to collaborators and
wiring the ingestion adapter into the guarded user actions.

Endpoints:
- POST /activities/evaluate: Score an activity directly
- POST /payments/mismatch: Payment settlement hook
- /blacklist: Blacklist administration
- /alerts: Alert review workflow
- POST /auth/login, /payments, /orders, /wallet/withdrawals: Guarded actions
- GET /health: Health check
- GET /metrics: Prometheus metrics
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..config import settings
from ..engine import RiskEngine
from ..exceptions import EvaluationError, StoreError
from ..metrics import metrics
from ..schemas import (
    ActivityInput,
    ActivityType,
    AlertFilters,
    AlertResolution,
    AlertSeverity,
    AlertStats,
    AlertType,
    BlacklistEntry,
    BlacklistRequest,
    EntityType,
    FraudAlert,
    PaymentMismatchRequest,
    RiskDecision,
)
from ..stores import RiskStore
from ..utils import get_logger
from .auth import require_admin_token, require_api_token, require_metrics_token
from .dependencies import (
    create_engine,
    create_redis,
    create_store,
    get_engine,
    get_redis,
    get_store,
    set_resources,
)
from .guard import FraudBlockedError, FraudCheckUnavailableError, fraud_guard

logger = logging.getLogger("riskgate.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Initializes and cleans up resources:
    - Store backend (memory or PostgreSQL)
    - Redis connection (only for USER_LOCK_BACKEND=redis)
    - Risk engine
    """
    get_logger("riskgate")

    store = create_store(settings)
    await store.initialize()

    redis_client: Optional[redis.Redis] = None
    if settings.user_lock_backend == "redis":
        redis_client = create_redis(settings)
        try:
            await redis_client.ping()
        except Exception as e:
            logger.warning("Redis connection failed: %s", e)

    engine = create_engine(settings, store, redis_client)
    set_resources(engine, store, redis_client)
    logger.info(
        "Risk engine ready (store=%s, fail_open=%s, lock=%s)",
        settings.store_backend,
        settings.fail_open,
        settings.user_lock_backend,
    )

    yield

    # Cleanup
    set_resources(None, None, None)
    if redis_client:
        await redis_client.aclose()
    await store.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Risk Gate API",
        description="Activity risk scoring and fraud alerting",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.exception_handler(FraudBlockedError)
    async def fraud_blocked_handler(request: Request, exc: FraudBlockedError):
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=exc.to_payload())

    @app.exception_handler(FraudCheckUnavailableError)
    async def fraud_unavailable_handler(request: Request, exc: FraudCheckUnavailableError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=exc.to_payload(),
        )

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error("Store error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Store unavailable"},
        )

    return app


app = create_app()


@app.get("/health")
async def health_check(
    store: RiskStore = Depends(get_store),
    redis_client: Optional[redis.Redis] = Depends(get_redis),
):
    """
    Health check endpoint.

    Returns service health status and component availability.
    """
    health = {
        "status": "healthy",
        "components": {"store": False},
    }

    try:
        health["components"]["store"] = await store.health_check()
    except Exception as e:
        logger.warning("Store health check failed: %s", e)

    if redis_client is not None:
        health["components"]["redis"] = False
        try:
            await redis_client.ping()
            health["components"]["redis"] = True
        except Exception as e:
            logger.warning("Redis health check failed: %s", e)

    for component, healthy in health["components"].items():
        metrics.component_health.labels(component=component).set(1 if healthy else 0)

    if not all(health["components"].values()):
        health["status"] = "degraded"

    return health


@app.get("/metrics")
def metrics_endpoint(_: None = Depends(require_metrics_token)):
    """Expose Prometheus metrics with optional token auth."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# =============================================================================
# Evaluation
# =============================================================================

@app.post("/activities/evaluate", response_model=RiskDecision)
async def evaluate_activity(
    activity: ActivityInput,
    engine: RiskEngine = Depends(get_engine),
    _: None = Depends(require_api_token),
):
    """
    Score an activity without enforcing the decision.

    For collaborators that apply their own enforcement.
    """
    try:
        return await engine.evaluate(activity)
    except EvaluationError as e:
        logger.error("Evaluation failed for user %s: %s", activity.user_id, e)
        raise HTTPException(status_code=503, detail="Evaluation failed")


@app.post("/payments/mismatch")
async def report_payment_mismatch(
    payload: PaymentMismatchRequest,
    engine: RiskEngine = Depends(get_engine),
    _: None = Depends(require_api_token),
):
    """Compare expected and settled amounts; alert on a mismatch."""
    metadata = dict(payload.metadata)
    if payload.transaction_ref:
        metadata["transaction_ref"] = payload.transaction_ref

    try:
        alert = await engine.check_payment_mismatch(
            payload.user_id,
            payload.expected_amount,
            payload.actual_amount,
            payload.payment_method,
            metadata,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EvaluationError as e:
        logger.error("Payment mismatch check failed for user %s: %s", payload.user_id, e)
        raise HTTPException(status_code=503, detail="Recording payment mismatch failed")

    return {
        "mismatch": alert is not None,
        "alert": alert.model_dump(mode="json") if alert else None,
    }


# =============================================================================
# Blacklist administration
# =============================================================================

@app.post("/blacklist", response_model=BlacklistEntry, status_code=201)
async def add_blacklist_entry(
    payload: BlacklistRequest,
    engine: RiskEngine = Depends(get_engine),
    _: None = Depends(require_admin_token),
):
    return await engine.add_to_blacklist(
        payload.entity_type,
        payload.entity_value,
        payload.reason,
        payload.added_by,
        payload.expires_at,
    )


@app.get("/blacklist", response_model=list[BlacklistEntry])
async def list_blacklist_entries(
    entity_type: Optional[EntityType] = None,
    active_only: bool = False,
    engine: RiskEngine = Depends(get_engine),
    _: None = Depends(require_admin_token),
):
    return await engine.blacklist.list_blacklist(entity_type=entity_type, active_only=active_only)


@app.delete("/blacklist/{entry_id}")
async def deactivate_blacklist_entry(
    entry_id: str,
    engine: RiskEngine = Depends(get_engine),
    _: None = Depends(require_admin_token),
):
    """Deactivate (not delete) a blacklist entry."""
    if not await engine.deactivate_blacklist_entry(entry_id):
        raise HTTPException(status_code=404, detail=f"Blacklist entry '{entry_id}' not found")
    return {"id": entry_id, "is_active": False}


# =============================================================================
# Alert review
# =============================================================================

@app.get("/alerts", response_model=list[FraudAlert])
async def list_alerts(
    user_id: Optional[str] = None,
    alert_type: Optional[AlertType] = None,
    severity: Optional[AlertSeverity] = None,
    is_resolved: Optional[bool] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(default=20, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    engine: RiskEngine = Depends(get_engine),
    _: None = Depends(require_admin_token),
):
    """List alerts, newest first."""
    filters = AlertFilters(
        user_id=user_id,
        alert_type=alert_type,
        severity=severity,
        is_resolved=is_resolved,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return await engine.alerts.list_alerts(filters)


@app.get("/alerts/stats", response_model=AlertStats)
async def get_alert_stats(
    engine: RiskEngine = Depends(get_engine),
    _: None = Depends(require_admin_token),
):
    return await engine.alerts.alert_stats(engine.clock())


@app.get("/alerts/{alert_id}", response_model=FraudAlert)
async def get_alert(
    alert_id: str,
    engine: RiskEngine = Depends(get_engine),
    _: None = Depends(require_admin_token),
):
    alert = await engine.alerts.get_alert(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail=f"Alert '{alert_id}' not found")
    return alert


@app.post("/alerts/{alert_id}/resolve", response_model=FraudAlert)
async def resolve_alert(
    alert_id: str,
    payload: AlertResolution,
    engine: RiskEngine = Depends(get_engine),
    _: None = Depends(require_admin_token),
):
    alert = await engine.resolve_alert(alert_id, payload.resolved_by, payload.resolution)
    if alert is None:
        raise HTTPException(status_code=404, detail=f"Alert '{alert_id}' not found")
    return alert


# =============================================================================
# Guarded actions
# =============================================================================
# Stand-ins for the platform's real handlers. Each is gated by the
# ingestion adapter with its activity type.

@app.post("/auth/login", dependencies=[Depends(fraud_guard(ActivityType.LOGIN))])
async def login():
    return {"status": "accepted"}


@app.post("/payments", dependencies=[Depends(fraud_guard(ActivityType.PAYMENT))])
async def create_payment():
    return {"status": "accepted"}


@app.post("/orders", dependencies=[Depends(fraud_guard(ActivityType.ORDER_PLACE))])
async def place_order():
    return {"status": "accepted"}


@app.post("/wallet/withdrawals", dependencies=[Depends(fraud_guard(ActivityType.WITHDRAWAL))])
async def request_withdrawal():
    return {"status": "accepted"}
