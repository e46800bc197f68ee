"""
Rate limiting package for the access service.

Holds the in-process fixed-window limiter that bounds request frequency
per principal, independent of plan quotas.
"""

from .fixed_window import FixedWindowRateLimiter, RateLimitWindow

__all__ = [
    "FixedWindowRateLimiter",
    "RateLimitWindow",
]
