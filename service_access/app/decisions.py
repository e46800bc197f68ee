"""
Result type shared by the quota engine and the rate limiter.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of a quota or rate check."""
    allowed: bool
    reason: Optional[str] = None
    upgrade: Optional[bool] = None
    remaining: Optional[int] = None
    reset_time: Optional[int] = None
    limit: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire form with only the populated fields."""
        result: Dict[str, Any] = {"allowed": self.allowed}
        if self.reason is not None:
            result["reason"] = self.reason
        if self.upgrade is not None:
            result["upgrade"] = self.upgrade
        if self.remaining is not None:
            result["remaining"] = self.remaining
        if self.reset_time is not None:
            result["resetTime"] = self.reset_time
        if self.limit is not None:
            result["limit"] = self.limit
        return result
