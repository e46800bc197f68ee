"""
Domain utilities for the access service.

Includes the authorization middleware that composes principal
resolution, rate limiting and quota checks in front of route handlers.
"""

from .auth_middleware import AuthMiddleware, AuthOptions

__all__ = [
    "AuthMiddleware",
    "AuthOptions",
]
