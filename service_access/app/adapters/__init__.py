"""
Adapters for the resolver's external collaborators (session store,
user repository).
"""

from .memory import InMemoryIntegrationStore, InMemorySessionStore, InMemoryUserRepository
from .redis_session_store import RedisSessionStore

__all__ = [
    "InMemoryIntegrationStore",
    "InMemorySessionStore",
    "InMemoryUserRepository",
    "RedisSessionStore",
]
