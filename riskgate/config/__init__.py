# Configuration
from .settings import Settings, get_settings, settings
from .velocity import (
    VelocityLimit,
    DEFAULT_VELOCITY_LIMITS,
    load_velocity_limits,
    parse_velocity_limits,
)

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "VelocityLimit",
    "DEFAULT_VELOCITY_LIMITS",
    "load_velocity_limits",
    "parse_velocity_limits",
]
