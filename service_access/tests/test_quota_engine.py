"""
Unit tests for the quota policy engine and plan limits.
"""

import pytest

from service_access.app.quota.engine import INVALID_PLAN_REASON, QuotaAction, QuotaPolicyEngine
from service_access.app.quota.plans import PLAN_LIMITS, UNLIMITED, get_plan_limits


class TestPlanLimits:
    """Test cases for the static plan table."""

    def test_known_tiers(self):
        assert get_plan_limits("starter").integrations == 3
        assert get_plan_limits("starter").syncs_per_month == 1000
        assert get_plan_limits("business").integrations == 10
        assert get_plan_limits("business").syncs_per_month == 10000
        assert get_plan_limits("enterprise").integrations == UNLIMITED
        assert get_plan_limits("enterprise").syncs_per_month == UNLIMITED

    def test_unknown_tier(self):
        assert get_plan_limits("platinum") is None
        assert get_plan_limits(None) is None

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            PLAN_LIMITS["free"] = PLAN_LIMITS["starter"]
        with pytest.raises(AttributeError):
            PLAN_LIMITS["starter"].integrations = 100


class TestQuotaPolicyEngine:
    """Test cases for QuotaPolicyEngine."""

    @pytest.fixture
    def engine(self):
        return QuotaPolicyEngine()

    def test_starter_at_integration_limit_denied(self, engine, make_principal):
        decision = engine.check_quota(make_principal("starter", integrations=3), QuotaAction.CREATE_INTEGRATION)

        assert decision.allowed is False
        assert decision.upgrade is True
        assert "3" in decision.reason

    def test_starter_below_integration_limit_allowed(self, engine, make_principal):
        decision = engine.check_quota(make_principal("starter", integrations=2), "create_integration")

        assert decision.allowed is True
        assert decision.remaining == 1

    def test_sync_limit(self, engine, make_principal):
        denied = engine.check_quota(make_principal("business", syncs=10000), QuotaAction.SYNC)
        allowed = engine.check_quota(make_principal("business", syncs=9999), QuotaAction.SYNC)

        assert denied.allowed is False
        assert denied.upgrade is True
        assert allowed.allowed is True

    @pytest.mark.parametrize("count", [0, 3, 10, 10_000, 10**9])
    def test_enterprise_unlimited(self, engine, make_principal, count):
        principal = make_principal("enterprise", integrations=count, syncs=count)

        assert engine.check_quota(principal, QuotaAction.CREATE_INTEGRATION).allowed is True
        assert engine.check_quota(principal, QuotaAction.SYNC).allowed is True

    @pytest.mark.parametrize("plan", ["", "platinum", "STARTER", "free"])
    def test_invalid_plan_denied(self, engine, make_principal, plan):
        decision = engine.check_quota(make_principal(plan), QuotaAction.SYNC)

        assert decision.allowed is False
        assert decision.reason == INVALID_PLAN_REASON

    def test_invalid_plan_denied_even_for_ungoverned_action(self, engine, make_principal):
        assert engine.check_quota(make_principal("corrupted"), "read_dashboard").allowed is False

    def test_ungoverned_action_allowed(self, engine, make_principal):
        assert engine.check_quota(make_principal("starter", integrations=99), "read_dashboard").allowed is True

    def test_engine_does_not_mutate_counters(self, engine, make_principal):
        principal = make_principal("starter", integrations=1, syncs=5)

        for _ in range(5):
            engine.check_quota(principal, QuotaAction.CREATE_INTEGRATION)
            engine.check_quota(principal, QuotaAction.SYNC)

        assert principal.usage.integrations_count == 1
        assert principal.usage.syncs_this_month == 5

    def test_decision_wire_form(self, engine, make_principal):
        decision = engine.check_quota(make_principal("starter", integrations=3), QuotaAction.CREATE_INTEGRATION)

        assert decision.to_dict() == {
            "allowed": False,
            "reason": decision.reason,
            "upgrade": True,
            "limit": 3,
        }

    def test_usage_summary(self, engine, make_principal):
        summary = engine.usage_summary(make_principal("starter", integrations=1, syncs=250))

        assert summary["integrations"] == {"used": 1, "limit": 3, "remaining": 2}
        assert summary["syncs"] == {"used": 250, "limit": 1000, "remaining": 750}
        assert summary["features"]["webhooks"] is False

    def test_usage_summary_unlimited(self, engine, make_principal):
        summary = engine.usage_summary(make_principal("enterprise", integrations=50))

        assert summary["integrations"]["limit"] is None
        assert summary["integrations"]["remaining"] is None

    def test_has_feature(self, engine, make_principal):
        assert engine.has_feature(make_principal("business"), "webhooks") is True
        assert engine.has_feature(make_principal("starter"), "webhooks") is False
        assert engine.has_feature(make_principal("unknown"), "webhooks") is False
