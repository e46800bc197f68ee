"""
Authorization middleware: the per-request composition of principal
resolution, rate limiting, plan gating and quota checks.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Optional

from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse

from shared.errors import (
    AccessLayerException,
    AuthenticationError,
    AuthorizationError,
    PlanRequired,
    QuotaExceeded,
    RateLimited,
    RateLimitError,
    ValidationError,
    VaultError,
)
from shared.logging import get_logger, set_user_context
from shared.metrics import MetricsCollector

from ..auth.models import Principal
from ..auth.principal_resolver import PrincipalResolver
from ..quota.engine import QuotaAction, QuotaPolicyEngine
from ..ratelimit.fixed_window import FixedWindowRateLimiter

Handler = Callable[[Request, Principal], Awaitable[Response]]

# Errors that carry no secrets and may be returned to the client as-is
CLIENT_SAFE_ERRORS = (AuthenticationError, AuthorizationError, RateLimitError, ValidationError)

INTERNAL_ERROR_BODY = {"error": "Internal server error", "code": "INTERNAL_ERROR"}


@dataclass(frozen=True)
class AuthOptions:
    """Per-route access requirements."""
    required_plans: Optional[FrozenSet[str]] = None
    quota_action: Optional[QuotaAction] = None
    rate_limit: bool = True
    max_requests: Optional[int] = None
    window_ms: Optional[int] = None

    @classmethod
    def build(
        cls,
        required_plans: Optional[Iterable[str]] = None,
        quota_action: Optional[QuotaAction] = None,
        **kwargs: Any,
    ) -> "AuthOptions":
        plans = frozenset(str(getattr(p, "value", p)) for p in required_plans) if required_plans else None
        return cls(required_plans=plans, quota_action=quota_action, **kwargs)


def error_response(exc: AccessLayerException, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    """Render a client-safe access layer error."""
    payload = exc.to_response()
    content: Dict[str, Any] = {"error": payload.message, "code": payload.code}
    content.update(payload.details)
    if payload.trace_id:
        content["trace_id"] = payload.trace_id
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


class AuthMiddleware:
    """Authentication and authorization for route handlers.

    Request flow, terminal on the first denial::

        resolve principal   -> 401 Unauthenticated / 404 PrincipalNotFound
        rate check          -> 429 with resetTime
        plan check          -> 403 {required, current}
        quota check         -> 403 {reason, upgrade}
        handler(request, principal)

    Anything unexpected is logged server side and answered with a generic
    500. Cancellation and timeouts are not converted; they propagate to
    whoever imposed them.
    """

    def __init__(
        self,
        resolver: PrincipalResolver,
        quota_engine: QuotaPolicyEngine,
        rate_limiter: FixedWindowRateLimiter,
        session_cookie_name: str = "session_token",
        metrics: Optional[MetricsCollector] = None,
    ):
        self.resolver = resolver
        self.quota_engine = quota_engine
        self.rate_limiter = rate_limiter
        self.session_cookie_name = session_cookie_name
        self.metrics = metrics
        self.logger = get_logger("access.auth_middleware")

    def extract_session_token(self, request: Request) -> Optional[str]:
        """Bearer token from the Authorization header, else the session cookie."""
        auth_header = request.headers.get("Authorization")
        if auth_header:
            scheme, _, token = auth_header.partition(" ")
            if scheme.lower() == "bearer" and token.strip():
                return token.strip()
            return None

        return request.cookies.get(self.session_cookie_name) or None

    async def require_auth(self, request: Request) -> Optional[Principal]:
        """Resolve the caller, or None when not signed in."""
        return await self.resolver.resolve_optional(self.extract_session_token(request))

    async def authorize(self, request: Request, options: AuthOptions) -> Principal:
        """Run every check for a request, raising the first denial."""
        try:
            principal = await self.resolver.resolve(self.extract_session_token(request))
        except AuthenticationError:
            self._record("authentication", False)
            raise
        self._record("authentication", True)
        set_user_context(user_id=principal.user_id)

        if options.rate_limit:
            decision = self.rate_limiter.check_rate(
                principal.user_id, options.max_requests, options.window_ms
            )
            self._record("rate_limit", decision.allowed)
            if not decision.allowed:
                raise RateLimited(reset_time=decision.reset_time)

        if options.required_plans and principal.plan not in options.required_plans:
            self._record("plan", False)
            self.logger.info(
                "Plan insufficient",
                user_id=principal.user_id,
                plan=principal.plan,
                required=sorted(options.required_plans),
            )
            raise PlanRequired(options.required_plans, principal.plan)

        if options.quota_action is not None:
            decision = self.quota_engine.check_quota(principal, options.quota_action)
            self._record("quota", decision.allowed)
            if not decision.allowed:
                raise QuotaExceeded(decision.reason, upgrade=bool(decision.upgrade))

        return principal

    def wrap_with_auth(self, handler: Handler, options: Optional[AuthOptions] = None) -> Callable[[Request], Awaitable[Response]]:
        """Wrap ``handler(request, principal)`` into a plain ``(request)`` endpoint."""
        options = options or AuthOptions()

        async def wrapped(request: Request) -> Response:
            try:
                principal = await self.authorize(request, options)
                return await handler(request, principal)
            except RateLimited as e:
                retry_after = self.retry_after_seconds(e.reset_time)
                return error_response(e, headers={"Retry-After": str(retry_after)})
            except CLIENT_SAFE_ERRORS as e:
                return error_response(e)
            except HTTPException:
                raise
            except (asyncio.TimeoutError, TimeoutError):
                raise
            except VaultError as e:
                # Never reflect vault/cipher detail to the caller
                self.logger.error("Credential vault failure during request", code=e.code, path=request.url.path)
                self._record_error("vault")
                return JSONResponse(status_code=500, content=dict(INTERNAL_ERROR_BODY))
            except Exception:
                self.logger.exception("Unhandled error in authorized request", path=request.url.path)
                self._record_error("unhandled")
                return JSONResponse(status_code=500, content=dict(INTERNAL_ERROR_BODY))

        wrapped.__name__ = getattr(handler, "__name__", "wrapped")
        wrapped.__doc__ = getattr(handler, "__doc__", None)
        return wrapped

    def retry_after_seconds(self, reset_time: Optional[int]) -> int:
        if reset_time is None:
            return 1
        remaining_ms = reset_time - self.rate_limiter.clock()
        return max(1, int((remaining_ms + 999) // 1000))

    def _record(self, check: str, allowed: bool):
        if self.metrics is not None:
            self.metrics.record_access_decision(check, allowed)

    def _record_error(self, error_type: str):
        if self.metrics is not None:
            self.metrics.record_error(error_type)
