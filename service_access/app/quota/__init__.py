"""
Quota policy package.

Plan ceilings live in ``plans``; ``engine`` turns a principal's usage
counters and a requested action into an AccessDecision.
"""

from .engine import QuotaAction, QuotaPolicyEngine
from .plans import PLAN_LIMITS, UNLIMITED, PlanLimits, get_plan_limits

__all__ = [
    "PLAN_LIMITS",
    "PlanLimits",
    "QuotaAction",
    "QuotaPolicyEngine",
    "UNLIMITED",
    "get_plan_limits",
]
