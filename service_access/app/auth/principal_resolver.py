"""
Principal resolution: session token -> canonical user record.
"""

from typing import Any, Mapping, Optional

from shared.errors import PrincipalNotFound, Unauthenticated
from shared.logging import get_logger

from .collaborators import SessionStore, UserRepository
from .models import PlanTier, Principal


class PrincipalResolver:
    """Maps an inbound session token to a Principal.

    Both lookups are awaited directly; cancellation and timeouts raised by
    the collaborators or by the caller propagate unchanged.
    """

    def __init__(self, session_store: SessionStore, user_repository: UserRepository):
        self.session_store = session_store
        self.user_repository = user_repository
        self.logger = get_logger("access.principal_resolver")

    async def resolve(self, session_token: Optional[str]) -> Principal:
        """Resolve a session token, raising Unauthenticated or PrincipalNotFound."""
        if not session_token or not session_token.strip():
            raise Unauthenticated()

        session = await self.session_store.validate(session_token)
        if session is None or not session.user_id:
            self.logger.info("Session absent or expired")
            raise Unauthenticated()

        record = await self.user_repository.find_by_id(session.user_id)
        if record is None:
            # Orphaned session: the account behind it was deleted
            self.logger.warning("Session references a missing user", user_id=session.user_id)
            raise PrincipalNotFound()

        return Principal.from_record(record)

    async def resolve_optional(self, session_token: Optional[str]) -> Optional[Principal]:
        """Like resolve, but None instead of an authentication error."""
        try:
            return await self.resolve(session_token)
        except (Unauthenticated, PrincipalNotFound):
            return None

    async def ensure_principal(self, fields: Mapping[str, Any]) -> Principal:
        """Provision a user record on first successful sign-in."""
        email = fields.get("email")
        record = {
            "email": email.strip().lower() if isinstance(email, str) else email,
            "name": fields.get("name") or "User",
            "plan": fields.get("plan") or PlanTier.STARTER.value,
            "usage": {"integrationsCount": 0, "syncsThisMonth": 0},
        }
        for key, value in fields.items():
            record.setdefault(key, value)

        created = await self.user_repository.create(record)
        principal = Principal.from_record(created)
        self.logger.info("User provisioned", user_id=principal.user_id, plan=principal.plan)
        return principal
