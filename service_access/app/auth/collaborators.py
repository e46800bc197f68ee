"""
Interfaces of the external collaborators the resolver depends on.
"""

from typing import Any, Dict, Mapping, Optional, Protocol

from .models import Session


class SessionStore(Protocol):
    """Validates session tokens issued by the identity provider."""

    async def validate(self, token: str) -> Optional[Session]:
        """Return the session, or None when absent or expired."""
        ...


class UserRepository(Protocol):
    """User record persistence."""

    async def find_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def create(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    async def increment_usage(self, user_id: str, counter: str, amount: int = 1) -> None:
        """Bump a usage counter; called by action executors, never by the engine."""
        ...
