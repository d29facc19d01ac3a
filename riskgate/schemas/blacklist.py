"""
Blacklist Schemas

Globally banned entities. An entry applies while it is active; expiry
enforcement is controlled by ENFORCE_BLACKLIST_EXPIRY.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class EntityType(str, Enum):
    """Kinds of entity that can be blacklisted."""
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    IP = "IP"
    DEVICE = "DEVICE"
    BANK_ACCOUNT = "BANK_ACCOUNT"


class BlacklistEntry(BaseModel):
    """A banned entity value."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    entity_type: EntityType
    entity_value: str = Field(..., min_length=1)
    reason: str
    added_by: str
    is_active: bool = True
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utc_now)

    def applies_at(self, now: datetime, enforce_expiry: bool = False) -> bool:
        """True if this entry bans its entity at `now`."""
        if not self.is_active:
            return False
        if enforce_expiry and self.expires_at is not None:
            expires_at = self.expires_at
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=UTC)
            return expires_at > now
        return True


class BlacklistRequest(BaseModel):
    """Payload for adding a blacklist entry."""
    entity_type: EntityType
    entity_value: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)
    added_by: str = Field(..., min_length=1)
    expires_at: Optional[datetime] = None
