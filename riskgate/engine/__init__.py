# Risk Engine
from .classification import RiskThresholds, derive_alert_type, ALERT_TYPE_PRECEDENCE
from .locks import UserLock, NullUserLock, LocalUserLock, RedisUserLock, create_user_lock
from .risk_engine import RiskEngine

__all__ = [
    "RiskEngine",
    "RiskThresholds",
    "derive_alert_type",
    "ALERT_TYPE_PRECEDENCE",
    "UserLock",
    "NullUserLock",
    "LocalUserLock",
    "RedisUserLock",
    "create_user_lock",
]
