"""
Unit tests for AuthMiddleware.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import Request
from fastapi.responses import JSONResponse

from service_access.app.auth.models import Principal, UsageCounters
from service_access.app.domain.auth_middleware import AuthMiddleware, AuthOptions
from service_access.app.quota.engine import QuotaAction, QuotaPolicyEngine
from service_access.app.ratelimit.fixed_window import FixedWindowRateLimiter
from shared.errors import IntegrityError, PrincipalNotFound, Unauthenticated, VaultError
from shared.metrics import MetricsCollector


def body_of(response) -> dict:
    return json.loads(response.body)


class TestAuthMiddleware:
    """Test cases for AuthMiddleware."""

    @pytest.fixture
    def principal(self):
        return Principal(
            user_id="user1",
            plan="starter",
            usage=UsageCounters(integrations_count=1, syncs_this_month=10),
        )

    @pytest.fixture
    def resolver(self, principal):
        resolver = AsyncMock()
        resolver.resolve.return_value = principal
        return resolver

    @pytest.fixture
    def quota_engine(self):
        return MagicMock(wraps=QuotaPolicyEngine())

    @pytest.fixture
    def rate_limiter(self):
        return MagicMock(wraps=FixedWindowRateLimiter(max_requests=3, window_ms=60_000))

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("access-test")

    @pytest.fixture
    def auth_middleware(self, resolver, quota_engine, rate_limiter, metrics):
        middleware = AuthMiddleware(resolver, quota_engine, rate_limiter, metrics=metrics)
        return middleware

    @pytest.fixture
    def mock_request(self):
        """Create mock request."""
        request = MagicMock(spec=Request)
        request.headers = {"Authorization": "Bearer valid_token"}
        request.cookies = {}
        request.url.path = "/api/v1/integrations"
        return request

    @pytest.fixture
    def handler(self):
        return AsyncMock(return_value=JSONResponse({"ok": True}))

    def test_extract_bearer_token(self, auth_middleware, mock_request):
        assert auth_middleware.extract_session_token(mock_request) == "valid_token"

    def test_extract_cookie_token(self, auth_middleware, mock_request):
        mock_request.headers = {}
        mock_request.cookies = {"session_token": "cookie_token"}

        assert auth_middleware.extract_session_token(mock_request) == "cookie_token"

    @pytest.mark.parametrize("header", ["Basic abc", "Bearer ", "Token"])
    def test_extract_rejects_other_schemes(self, auth_middleware, mock_request, header):
        mock_request.headers = {"Authorization": header}

        assert auth_middleware.extract_session_token(mock_request) is None

    @pytest.mark.asyncio
    async def test_success_delegates_to_handler(self, auth_middleware, mock_request, handler, principal, resolver):
        wrapped = auth_middleware.wrap_with_auth(handler)

        response = await wrapped(mock_request)

        assert response.status_code == 200
        handler.assert_awaited_once_with(mock_request, principal)
        resolver.resolve.assert_awaited_once_with("valid_token")

    @pytest.mark.asyncio
    async def test_unauthenticated_short_circuits(
        self, auth_middleware, mock_request, handler, resolver, quota_engine, rate_limiter
    ):
        """Test expired sessions are rejected before any rate or quota state is read."""
        resolver.resolve.side_effect = Unauthenticated()
        wrapped = auth_middleware.wrap_with_auth(
            handler, AuthOptions.build(quota_action=QuotaAction.CREATE_INTEGRATION)
        )

        response = await wrapped(mock_request)

        assert response.status_code == 401
        assert body_of(response)["error"] == "Not authenticated"
        handler.assert_not_awaited()
        rate_limiter.check_rate.assert_not_called()
        quota_engine.check_quota.assert_not_called()

    @pytest.mark.asyncio
    async def test_principal_not_found(self, auth_middleware, mock_request, handler, resolver, rate_limiter):
        resolver.resolve.side_effect = PrincipalNotFound()

        response = await auth_middleware.wrap_with_auth(handler)(mock_request)

        assert response.status_code == 404
        assert body_of(response)["code"] == "PRINCIPAL_NOT_FOUND"
        rate_limiter.check_rate.assert_not_called()

    @pytest.mark.asyncio
    async def test_rate_limited(self, auth_middleware, mock_request, handler):
        wrapped = auth_middleware.wrap_with_auth(handler)
        for _ in range(3):
            assert (await wrapped(mock_request)).status_code == 200

        response = await wrapped(mock_request)

        assert response.status_code == 429
        body = body_of(response)
        assert body["remaining"] == 0
        assert isinstance(body["resetTime"], int)
        assert int(response.headers["Retry-After"]) >= 1
        assert handler.await_count == 3

    @pytest.mark.asyncio
    async def test_rate_limit_can_be_disabled(self, auth_middleware, mock_request, handler, rate_limiter):
        wrapped = auth_middleware.wrap_with_auth(handler, AuthOptions.build(rate_limit=False))

        for _ in range(5):
            assert (await wrapped(mock_request)).status_code == 200
        rate_limiter.check_rate.assert_not_called()

    @pytest.mark.asyncio
    async def test_plan_required(self, auth_middleware, mock_request, handler):
        wrapped = auth_middleware.wrap_with_auth(
            handler, AuthOptions.build(required_plans={"business", "enterprise"})
        )

        response = await wrapped(mock_request)

        assert response.status_code == 403
        assert body_of(response)["required"] == ["business", "enterprise"]
        assert body_of(response)["current"] == "starter"
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_quota_exceeded(self, auth_middleware, mock_request, handler, resolver):
        resolver.resolve.return_value = Principal(
            user_id="user1", plan="starter", usage=UsageCounters(integrations_count=3)
        )
        wrapped = auth_middleware.wrap_with_auth(
            handler, AuthOptions.build(quota_action=QuotaAction.CREATE_INTEGRATION)
        )

        response = await wrapped(mock_request)

        assert response.status_code == 403
        body = body_of(response)
        assert body["upgrade"] is True
        assert "3" in body["reason"]
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_plan_denied_by_quota(self, auth_middleware, mock_request, handler, resolver):
        resolver.resolve.return_value = Principal(user_id="user1", plan="corrupted")
        wrapped = auth_middleware.wrap_with_auth(handler, AuthOptions.build(quota_action=QuotaAction.SYNC))

        response = await wrapped(mock_request)

        assert response.status_code == 403
        assert body_of(response)["reason"] == "invalid plan"

    @pytest.mark.asyncio
    async def test_handler_error_is_generic_500(self, auth_middleware, mock_request, handler):
        handler.side_effect = RuntimeError("database password is hunter2")

        response = await auth_middleware.wrap_with_auth(handler)(mock_request)

        assert response.status_code == 500
        assert "hunter2" not in response.body.decode()
        assert body_of(response)["error"] == "Internal server error"

    @pytest.mark.asyncio
    async def test_vault_error_is_generic_500(self, auth_middleware, mock_request, handler):
        handler.side_effect = VaultError()

        response = await auth_middleware.wrap_with_auth(handler)(mock_request)

        assert response.status_code == 500
        assert body_of(response)["code"] == "INTERNAL_ERROR"

    @pytest.mark.asyncio
    async def test_integrity_error_not_reflected(self, auth_middleware, mock_request, handler):
        handler.side_effect = IntegrityError()

        response = await auth_middleware.wrap_with_auth(handler)(mock_request)

        assert response.status_code == 500
        assert "INTEGRITY" not in response.body.decode()

    @pytest.mark.asyncio
    async def test_resolver_failure_is_generic_500(self, auth_middleware, mock_request, handler, resolver):
        resolver.resolve.side_effect = ConnectionError("redis://:secret@host")

        response = await auth_middleware.wrap_with_auth(handler)(mock_request)

        assert response.status_code == 500
        assert "secret" not in response.body.decode()

    @pytest.mark.asyncio
    async def test_timeout_propagates(self, auth_middleware, mock_request, handler, resolver):
        resolver.resolve.side_effect = asyncio.TimeoutError()

        with pytest.raises(asyncio.TimeoutError):
            await auth_middleware.wrap_with_auth(handler)(mock_request)

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, auth_middleware, mock_request, handler):
        handler.side_effect = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await auth_middleware.wrap_with_auth(handler)(mock_request)

    @pytest.mark.asyncio
    async def test_decisions_recorded(self, auth_middleware, mock_request, handler, metrics):
        await auth_middleware.wrap_with_auth(
            handler, AuthOptions.build(quota_action=QuotaAction.SYNC)
        )(mock_request)

        assert metrics.sample("access_decisions_total", check="authentication", outcome="allowed") == 1
        assert metrics.sample("access_decisions_total", check="rate_limit", outcome="allowed") == 1
        assert metrics.sample("access_decisions_total", check="quota", outcome="allowed") == 1

    @pytest.mark.asyncio
    async def test_require_auth(self, auth_middleware, mock_request, resolver, principal):
        resolver.resolve_optional.return_value = principal

        assert await auth_middleware.require_auth(mock_request) is principal
        resolver.resolve_optional.assert_awaited_once_with("valid_token")
