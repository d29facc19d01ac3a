"""
Velocity Limit Configuration

Per-activity-type sliding window limits, loaded once at startup from
YAML so operators can tune them without a code change:

    LOGIN:
      count: 10
      window_minutes: 60

Activity types missing from the file have no limit.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..exceptions import ConfigurationError

logger = logging.getLogger("riskgate.config")


class VelocityLimit(BaseModel):
    """Maximum number of activities allowed inside a window."""
    count: int = Field(..., ge=1)
    window_minutes: int = Field(..., ge=1)


DEFAULT_VELOCITY_LIMITS: dict[str, VelocityLimit] = {
    "LOGIN": VelocityLimit(count=10, window_minutes=60),
    "PAYMENT": VelocityLimit(count=5, window_minutes=30),
    "ORDER_PLACE": VelocityLimit(count=20, window_minutes=60),
    "WITHDRAWAL": VelocityLimit(count=3, window_minutes=120),
}


def parse_velocity_limits(config: object) -> dict[str, VelocityLimit]:
    """
    Validate a mapping loaded from YAML.

    Raises:
        ConfigurationError: if the document is not a mapping of valid limits
    """
    if not isinstance(config, dict):
        raise ConfigurationError("Velocity limits must be a mapping of activity type to limit")

    limits: dict[str, VelocityLimit] = {}
    for activity_type, raw in config.items():
        try:
            limits[str(activity_type).upper()] = VelocityLimit(**raw)
        except (TypeError, ValidationError) as e:
            raise ConfigurationError(
                f"Invalid velocity limit for {activity_type}: {e}"
            ) from e
    return limits


def load_velocity_limits(path: Optional[Union[str, Path]]) -> dict[str, VelocityLimit]:
    """
    Load velocity limits from a YAML file.

    Falls back to DEFAULT_VELOCITY_LIMITS when the file is missing or
    unreadable. A file that parses but holds invalid limits is an error.
    """
    if not path:
        return dict(DEFAULT_VELOCITY_LIMITS)

    path = Path(path)
    if not path.exists():
        logger.warning("Velocity limits file %s not found, using defaults", path)
        return dict(DEFAULT_VELOCITY_LIMITS)

    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Velocity limits file %s unreadable (%s), using defaults", path, e)
        return dict(DEFAULT_VELOCITY_LIMITS)

    return parse_velocity_limits(config or {})
