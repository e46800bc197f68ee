"""
Quota policy evaluation for plan-governed actions.
"""

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from shared.logging import get_logger

from ..auth.models import Principal
from ..decisions import AccessDecision
from .plans import PLAN_LIMITS, PlanLimits


class QuotaAction(str, Enum):
    """Actions governed by plan quotas."""
    CREATE_INTEGRATION = "create_integration"
    SYNC = "sync"


INVALID_PLAN_REASON = "invalid plan"


class QuotaPolicyEngine:
    """Allow/deny decisions over (plan, usage counters, action).

    Pure: counters are read as the principal carries them and never
    incremented here. Concurrent callers can therefore both pass a check
    at the boundary; the limit is a soft limit.
    """

    def __init__(self, plan_limits: Optional[Mapping[str, PlanLimits]] = None):
        self.plan_limits = plan_limits if plan_limits is not None else PLAN_LIMITS
        self.logger = get_logger("access.quota_engine")

    def check_quota(self, principal: Principal, action: Union[QuotaAction, str]) -> AccessDecision:
        """Decide whether the principal may perform the action under its plan."""
        limits = self.plan_limits.get(principal.plan) if isinstance(principal.plan, str) else None
        if limits is None:
            self.logger.warning("Unknown plan tier", user_id=principal.user_id, plan=principal.plan)
            return AccessDecision(allowed=False, reason=INVALID_PLAN_REASON)

        try:
            action = QuotaAction(action)
        except ValueError:
            # Not quota-governed
            return AccessDecision(allowed=True)

        if action == QuotaAction.CREATE_INTEGRATION:
            ceiling = limits.integrations
            used = principal.usage.integrations_count
            reason = f"Limit of {ceiling} integrations reached"
        else:
            ceiling = limits.syncs_per_month
            used = principal.usage.syncs_this_month
            reason = f"Limit of {ceiling} syncs per month reached"

        if PlanLimits.is_unlimited(ceiling):
            return AccessDecision(allowed=True)

        if used >= ceiling:
            self.logger.info(
                "Quota exceeded",
                user_id=principal.user_id,
                plan=principal.plan,
                action=action.value,
                used=used,
                limit=ceiling,
            )
            return AccessDecision(allowed=False, reason=reason, upgrade=True, limit=ceiling)

        return AccessDecision(allowed=True, remaining=ceiling - used, limit=ceiling)

    def has_feature(self, principal: Principal, feature: str) -> bool:
        """Check a boolean plan feature such as ``webhooks``."""
        limits = self.plan_limits.get(principal.plan) if isinstance(principal.plan, str) else None
        if limits is None:
            return False
        return bool(getattr(limits, feature, False))

    def usage_summary(self, principal: Principal) -> Dict[str, Any]:
        """Remaining allowance per governed action; None means unlimited."""
        limits = self.plan_limits.get(principal.plan) if isinstance(principal.plan, str) else None
        if limits is None:
            return {"plan": principal.plan, "valid": False}

        def remaining(ceiling: int, used: int) -> Optional[int]:
            if PlanLimits.is_unlimited(ceiling):
                return None
            return max(0, ceiling - used)

        return {
            "plan": principal.plan,
            "valid": True,
            "integrations": {
                "used": principal.usage.integrations_count,
                "limit": None if PlanLimits.is_unlimited(limits.integrations) else limits.integrations,
                "remaining": remaining(limits.integrations, principal.usage.integrations_count),
            },
            "syncs": {
                "used": principal.usage.syncs_this_month,
                "limit": None if PlanLimits.is_unlimited(limits.syncs_per_month) else limits.syncs_per_month,
                "remaining": remaining(limits.syncs_per_month, principal.usage.syncs_this_month),
            },
            "features": {
                "webhooks": limits.webhooks,
                "advancedFeatures": limits.advanced_features,
            },
        }
