# API layer
from .guard import (
    fraud_guard,
    build_activity_input,
    parse_location_header,
    FraudBlockedError,
    FraudCheckUnavailableError,
)

__all__ = [
    "fraud_guard",
    "build_activity_input",
    "parse_location_header",
    "FraudBlockedError",
    "FraudCheckUnavailableError",
]
