# Persistence backends
from .base import (
    ActivityStore,
    AlertStore,
    BlacklistStore,
    EvaluationRecorder,
    RiskStore,
)
from .memory import InMemoryStore
from .postgres import PostgresStore

__all__ = [
    "ActivityStore",
    "AlertStore",
    "BlacklistStore",
    "EvaluationRecorder",
    "RiskStore",
    "InMemoryStore",
    "PostgresStore",
]
