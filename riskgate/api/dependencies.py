"""
API Dependencies

Construction of shared resources (store, Redis, engine) and FastAPI
dependency providers for them.
"""

from typing import Optional

import redis.asyncio as redis
from fastapi import HTTPException, status

from ..config import Settings, load_velocity_limits
from ..engine import RiskEngine, RiskThresholds, create_user_lock
from ..stores import InMemoryStore, PostgresStore, RiskStore


# Initialized by the application lifespan
_engine: Optional[RiskEngine] = None
_store: Optional[RiskStore] = None
_redis: Optional[redis.Redis] = None


def create_store(config: Settings) -> RiskStore:
    """Store backend selected by STORE_BACKEND."""
    if config.store_backend == "postgres":
        return PostgresStore(
            config.postgres_url,
            statement_timeout_ms=config.postgres_statement_timeout_ms,
            echo=config.app_debug,
        )
    return InMemoryStore()


def create_redis(config: Settings) -> redis.Redis:
    return redis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        db=config.redis_db,
        password=config.redis_password,
        decode_responses=True,
    )


def create_engine(
    config: Settings,
    store: RiskStore,
    redis_client: Optional[redis.Redis] = None,
) -> RiskEngine:
    """Wire the engine from settings. Velocity limits are loaded here, once."""
    return RiskEngine.from_store(
        store,
        thresholds=RiskThresholds(
            low=config.risk_threshold_low,
            medium=config.risk_threshold_medium,
            high=config.risk_threshold_high,
            critical=config.risk_threshold_critical,
        ),
        velocity_limits=load_velocity_limits(config.velocity_limits_path),
        fail_open=config.fail_open,
        check_timeout_seconds=config.check_timeout_seconds,
        user_lock=create_user_lock(
            config.user_lock_backend,
            redis_client=redis_client,
            key_prefix=config.redis_key_prefix,
            timeout_seconds=config.user_lock_timeout_seconds,
        ),
    )


def set_resources(
    engine: Optional[RiskEngine],
    store: Optional[RiskStore],
    redis_client: Optional[redis.Redis] = None,
) -> None:
    global _engine, _store, _redis
    _engine = engine
    _store = store
    _redis = redis_client


def get_engine() -> RiskEngine:
    """Risk engine for the current app."""
    if _engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Risk engine not initialized",
        )
    return _engine


def get_store() -> RiskStore:
    if _store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Store not initialized",
        )
    return _store


def get_redis() -> Optional[redis.Redis]:
    return _redis
