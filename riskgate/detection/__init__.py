# Check Modules
from .base import BaseCheck, CheckResult
from .blacklist import BlacklistCheck
from .velocity import VelocityCheck
from .location import LocationAnomalyCheck
from .device import DeviceAnomalyCheck
from .behavior import BehaviorHistoryCheck

__all__ = [
    "BaseCheck",
    "CheckResult",
    "BlacklistCheck",
    "VelocityCheck",
    "LocationAnomalyCheck",
    "DeviceAnomalyCheck",
    "BehaviorHistoryCheck",
]
