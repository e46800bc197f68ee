"""
Static plan ceilings.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

UNLIMITED = -1


@dataclass(frozen=True)
class PlanLimits:
    """Numeric ceilings and feature flags of a plan tier."""
    integrations: int
    syncs_per_month: int
    webhooks: bool = False
    advanced_features: bool = False

    @staticmethod
    def is_unlimited(value: int) -> bool:
        return value == UNLIMITED


PLAN_LIMITS: Mapping[str, PlanLimits] = MappingProxyType({
    "starter": PlanLimits(integrations=3, syncs_per_month=1000),
    "business": PlanLimits(integrations=10, syncs_per_month=10000, webhooks=True, advanced_features=True),
    "enterprise": PlanLimits(
        integrations=UNLIMITED, syncs_per_month=UNLIMITED, webhooks=True, advanced_features=True
    ),
})


def get_plan_limits(plan: str) -> Optional[PlanLimits]:
    """Limits for a plan tag, or None when the tag is unknown."""
    if not isinstance(plan, str):
        return None
    return PLAN_LIMITS.get(plan)
