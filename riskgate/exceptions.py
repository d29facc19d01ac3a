"""
Exceptions raised by the risk engine and its stores.
"""


class RiskEngineError(Exception):
    """Base class for all riskgate errors."""


class ConfigurationError(RiskEngineError):
    """Invalid configuration data (thresholds, velocity limits)."""


class StoreError(RiskEngineError):
    """A store operation failed."""


class StoreUnavailableError(StoreError):
    """The store layer cannot be reached at all."""


class EvaluationError(RiskEngineError):
    """Evaluation could not complete under a fail-closed policy."""
