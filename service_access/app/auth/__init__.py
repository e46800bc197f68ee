"""
Authentication package: principal models, collaborator interfaces and the
resolver that turns a session token into a Principal.
"""

from .models import PlanTier, Principal, Session, UsageCounters
from .principal_resolver import PrincipalResolver

__all__ = [
    "PlanTier",
    "Principal",
    "PrincipalResolver",
    "Session",
    "UsageCounters",
]
