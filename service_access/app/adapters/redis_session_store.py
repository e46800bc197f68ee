"""
Redis-backed session store.
"""

import json
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis.asyncio as redis

from shared.logging import get_logger

from ..auth.models import Session


class RedisSessionStore:
    """Sessions stored as JSON under ``session:<token>`` with a TTL.

    Connection and command errors propagate to the caller.
    """

    SESSION_PREFIX = "session:"

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.logger = get_logger("access.sessions.redis")
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    def _make_key(self, token: str) -> str:
        return f"{self.SESSION_PREFIX}{token}"

    async def validate(self, token: str) -> Optional[Session]:
        redis_client = await self._get_redis()
        raw = await redis_client.get(self._make_key(token))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")

        try:
            session = Session.model_validate(json.loads(raw))
        except ValueError:
            self.logger.warning("Discarding malformed session document")
            return None

        if session.is_expired():
            return None
        return session

    async def create(self, user_id: str, ttl_seconds: int) -> str:
        """Store a new session and return its token."""
        token = secrets.token_urlsafe(32)
        session = Session(
            user_id=user_id,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
        )
        redis_client = await self._get_redis()
        await redis_client.setex(self._make_key(token), ttl_seconds, session.model_dump_json())
        self.logger.info("Session created", user_id=user_id, ttl_seconds=ttl_seconds)
        return token

    async def revoke(self, token: str) -> bool:
        redis_client = await self._get_redis()
        deleted = await redis_client.delete(self._make_key(token))
        return bool(deleted)

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
