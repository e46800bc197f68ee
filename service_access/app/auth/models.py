"""
Principal and session data models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class PlanTier(str, Enum):
    """Subscription plan tiers."""
    STARTER = "starter"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"


class UsageCounters(BaseModel):
    """Usage counters maintained by sync execution, read-only here."""
    model_config = ConfigDict(frozen=True)

    integrations_count: int = Field(0, ge=0)
    syncs_this_month: int = Field(0, ge=0)
    last_sync: Optional[datetime] = None


class Principal(BaseModel):
    """Resolved identity of the caller.

    ``plan`` stays a plain string: a corrupted or unmigrated tag must reach
    the quota engine intact so it can deny, rather than fail validation here.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    plan: str
    usage: UsageCounters = Field(default_factory=UsageCounters)
    email: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Principal":
        """Build a principal from a user repository record."""
        user_id = record.get("_id", record.get("id"))
        if user_id is None:
            raise ValueError("User record has no identifier")

        usage = record.get("usage") or {}
        return cls(
            user_id=str(user_id),
            plan=str(record.get("plan") or ""),
            usage=UsageCounters(
                integrations_count=usage.get("integrationsCount", 0) or 0,
                syncs_this_month=usage.get("syncsThisMonth", 0) or 0,
                last_sync=usage.get("lastSync"),
            ),
            email=record.get("email"),
            name=record.get("name"),
        )

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.user_id,
            "email": self.email,
            "name": self.name,
            "plan": self.plan,
            "usage": {
                "integrationsCount": self.usage.integrations_count,
                "syncsThisMonth": self.usage.syncs_this_month,
                "lastSync": self.usage.last_sync.isoformat() if self.usage.last_sync else None,
            },
        }


class Session(BaseModel):
    """Validated session as returned by a session store."""
    user_id: str
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at
