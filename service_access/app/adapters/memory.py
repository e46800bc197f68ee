"""
In-process session store and user repository.

Used for the ``local`` environment and by tests; production deployments
point the resolver at the identity provider's session store and the
document store instead.
"""

import asyncio
import copy
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

from shared.logging import get_logger

from ..auth.models import Session

USAGE_COUNTERS = {"integrationsCount", "syncsThisMonth"}


class InMemorySessionStore:
    """Token -> Session map honouring expiry."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self.logger = get_logger("access.sessions.memory")

    async def validate(self, token: str) -> Optional[Session]:
        session = self._sessions.get(token)
        if session is None:
            return None
        if session.is_expired():
            self._sessions.pop(token, None)
            return None
        return session

    async def create(self, user_id: str, ttl_seconds: Optional[int] = None) -> str:
        token = secrets.token_urlsafe(32)
        expires_at = None
        if ttl_seconds is not None:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        self._sessions[token] = Session(user_id=user_id, expires_at=expires_at)
        return token

    def put(self, token: str, session: Session) -> None:
        """Register a session under a known token."""
        self._sessions[token] = session

    async def revoke(self, token: str) -> bool:
        return self._sessions.pop(token, None) is not None


class InMemoryUserRepository:
    """Dict-backed user records keyed by a hex ``_id``."""

    def __init__(self):
        self._users: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self.logger = get_logger("access.users.memory")

    async def find_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        record = self._users.get(user_id)
        return copy.deepcopy(record) if record is not None else None

    async def create(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        record = copy.deepcopy(dict(fields))
        user_id = str(record.get("_id") or secrets.token_hex(12))
        record["_id"] = user_id
        record.setdefault("usage", {"integrationsCount": 0, "syncsThisMonth": 0})
        now = datetime.now(timezone.utc)
        record.setdefault("createdAt", now)
        record["updatedAt"] = now

        async with self._lock:
            self._users[user_id] = record
        return copy.deepcopy(record)

    async def increment_usage(self, user_id: str, counter: str, amount: int = 1) -> None:
        if counter not in USAGE_COUNTERS:
            raise ValueError(f"Unknown usage counter: {counter}")

        async with self._lock:
            record = self._users.get(user_id)
            if record is None:
                raise KeyError(user_id)
            usage = record.setdefault("usage", {})
            usage[counter] = max(0, usage.get(counter, 0) + amount)
            if counter == "syncsThisMonth" and amount > 0:
                usage["lastSync"] = datetime.now(timezone.utc)
            record["updatedAt"] = datetime.now(timezone.utc)

    async def delete(self, user_id: str) -> bool:
        async with self._lock:
            return self._users.pop(user_id, None) is not None


class InMemoryIntegrationStore:
    """Integration documents holding sealed source/destination credentials.

    Sealed tokens are replaced wholesale on reconfiguration, never edited.
    """

    def __init__(self):
        self._integrations: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def create(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        record = copy.deepcopy(dict(fields))
        record["_id"] = secrets.token_hex(12)
        now = datetime.now(timezone.utc)
        record["createdAt"] = now
        record["updatedAt"] = now
        async with self._lock:
            self._integrations[record["_id"]] = record
        return copy.deepcopy(record)

    async def get(self, integration_id: str) -> Optional[Dict[str, Any]]:
        record = self._integrations.get(integration_id)
        return copy.deepcopy(record) if record is not None else None

    async def list_for_user(self, user_id: str) -> list:
        return [
            copy.deepcopy(record)
            for record in self._integrations.values()
            if record.get("userId") == user_id
        ]

    async def update(self, integration_id: str, changes: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        async with self._lock:
            record = self._integrations.get(integration_id)
            if record is None:
                return None
            record.update(copy.deepcopy(dict(changes)))
            record["updatedAt"] = datetime.now(timezone.utc)
            return copy.deepcopy(record)

    async def delete(self, integration_id: str) -> bool:
        async with self._lock:
            return self._integrations.pop(integration_id, None) is not None
