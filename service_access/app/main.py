"""
Access service: credential vault and access policy engine behind a
FastAPI application.
"""

import json
import time
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from shared.config import AccessSettings, get_settings
from shared.errors import AccessLayerException, RateLimited, ValidationError, VaultError
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector
from shared.secrets_manager import EnvSecretStore, SecretStore

from .adapters.memory import InMemoryIntegrationStore, InMemorySessionStore, InMemoryUserRepository
from .adapters.redis_session_store import RedisSessionStore
from .api_models import (
    CredentialsUpdateRequest,
    HealthResponse,
    IntegrationCreateRequest,
    IntegrationResponse,
    MaskedCredentialsResponse,
)
from .auth.collaborators import SessionStore, UserRepository
from .auth.models import Principal
from .auth.principal_resolver import PrincipalResolver
from .crypto.cipher import CredentialCipher, load_encryption_key
from .crypto.tokens import mask_sensitive_data, verify_webhook_signature
from .domain.auth_middleware import (
    CLIENT_SAFE_ERRORS,
    INTERNAL_ERROR_BODY,
    AuthMiddleware,
    AuthOptions,
    error_response,
)
from .quota.engine import QuotaAction, QuotaPolicyEngine
from .quota.plans import PLAN_LIMITS
from .ratelimit.fixed_window import FixedWindowRateLimiter
from .vault.credential_vault import CredentialVault

WEBHOOK_PLANS = frozenset(plan for plan, limits in PLAN_LIMITS.items() if limits.webhooks)
WEBHOOK_RATE_KEY_PREFIX = "webhook:"


def mask_credentials(credentials: Dict[str, Any]) -> Dict[str, Any]:
    """Masked view of opened credentials, safe to return to the owner."""
    return {
        key: value if key == "type" or not isinstance(value, str) else mask_sensitive_data(value)
        for key, value in credentials.items()
    }


async def read_model(request: Request, model):
    """Parse and validate a JSON body, reporting field locations only."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON") from None

    try:
        return model.model_validate(body)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "error": err["type"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid request body", details={"errors": errors}) from None


class AccessService:
    """Composition root: wires key material, vault, resolver, policies and routes."""

    def __init__(
        self,
        settings: Optional[AccessSettings] = None,
        secret_store: Optional[SecretStore] = None,
        session_store: Optional[SessionStore] = None,
        user_repository: Optional[UserRepository] = None,
        integration_store: Optional[InMemoryIntegrationStore] = None,
        clock=None,
    ):
        self.settings = settings or get_settings()
        configure_logging(self.settings.service_name, self.settings.log_level)
        self.logger = get_logger(f"{self.settings.service_name}.service")
        self.metrics = get_metrics_collector(self.settings.service_name)

        # Fail fast: a missing or malformed key aborts startup
        secret_store = secret_store or EnvSecretStore(self.settings.secrets_file)
        self.cipher = CredentialCipher(load_encryption_key(secret_store))
        self.vault = CredentialVault(self.cipher, metrics=self.metrics)

        self.session_store = session_store or self._default_session_store()
        self.user_repository = user_repository or InMemoryUserRepository()
        self.integration_store = integration_store or InMemoryIntegrationStore()

        self.resolver = PrincipalResolver(self.session_store, self.user_repository)
        self.quota_engine = QuotaPolicyEngine()
        self.rate_limiter = FixedWindowRateLimiter(
            max_requests=self.settings.rate_limit_max_requests,
            window_ms=self.settings.rate_limit_window_ms,
            eviction_windows=self.settings.rate_limit_eviction_windows,
            max_entries=self.settings.rate_limit_max_entries,
            clock=clock,
        )
        self.auth = AuthMiddleware(
            self.resolver,
            self.quota_engine,
            self.rate_limiter,
            session_cookie_name=self.settings.session_cookie_name,
            metrics=self.metrics,
        )

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_exception_handlers()
        self._setup_routes()

        self.logger.info(
            "Access service initialized",
            env=self.settings.env,
            session_backend=self.settings.session_backend,
            rate_limit=self.settings.rate_limit_max_requests,
            window_ms=self.settings.rate_limit_window_ms,
        )

    def _default_session_store(self) -> SessionStore:
        if self.settings.session_backend == "redis":
            return RedisSessionStore(self.settings.redis_url)
        return InMemorySessionStore()

    async def open_session(self, profile: Dict[str, Any]) -> Tuple[Principal, str]:
        """Provision the principal for a signed-in identity and issue a session token."""
        principal = await self.resolver.ensure_principal(profile)
        token = await self.session_store.create(principal.user_id, ttl_seconds=self.settings.session_ttl_seconds)
        self.logger.info("Session opened", user_id=principal.user_id, ttl_seconds=self.settings.session_ttl_seconds)
        return principal, token

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        app = FastAPI(
            title="Integration Hub Access Service",
            description="Credential vault and access policy engine",
            version="1.0.0",
            docs_url="/docs" if self.settings.env == "local" else None,
            redoc_url=None,
        )
        app.state.service = self
        return app

    def _setup_middleware(self):
        """Set up middleware."""

        @self.app.middleware("http")
        async def add_request_context(request: Request, call_next):
            clear_context()
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            start_time = time.time()

            response = await call_next(request)

            duration = time.time() - start_time
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)
            self.metrics.record_http_request(
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code,
                duration=duration
            )
            self.logger.info(
                "HTTP request",
                method=request.method,
                path=endpoint,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2)
            )
            response.headers["X-Request-ID"] = request_id
            return response

    def _setup_exception_handlers(self):
        """Errors raised outside wrapped handlers get the same treatment."""

        @self.app.exception_handler(AccessLayerException)
        async def access_layer_exception_handler(request: Request, exc: AccessLayerException):
            if isinstance(exc, CLIENT_SAFE_ERRORS):
                return error_response(exc)
            if isinstance(exc, VaultError):
                self.logger.error("Credential vault failure", code=exc.code, path=request.url.path)
            else:
                self.logger.error("Access layer error", code=exc.code, path=request.url.path)
            self.metrics.record_error(exc.code.lower())
            return JSONResponse(status_code=500, content=dict(INTERNAL_ERROR_BODY))

    def _setup_routes(self):
        """Set up routes."""
        app = self.app
        auth = self.auth

        @app.get("/health", response_model=HealthResponse)
        async def health_check():
            return HealthResponse(
                service=self.settings.service_name,
                status="ok",
                details={"rate_limiter": self.rate_limiter.stats()},
            )

        @app.get("/metrics")
        async def metrics():
            return Response(content=self.metrics.export(), media_type="text/plain; version=0.0.4")

        app.add_api_route(
            "/api/v1/me",
            auth.wrap_with_auth(self.get_me),
            methods=["GET"],
        )
        app.add_api_route(
            "/api/v1/integrations",
            auth.wrap_with_auth(self.list_integrations),
            methods=["GET"],
        )
        app.add_api_route(
            "/api/v1/integrations",
            auth.wrap_with_auth(
                self.create_integration,
                AuthOptions.build(quota_action=QuotaAction.CREATE_INTEGRATION),
            ),
            methods=["POST"],
        )
        app.add_api_route(
            "/api/v1/integrations/{integration_id}/credentials",
            auth.wrap_with_auth(self.read_credentials),
            methods=["GET"],
        )
        app.add_api_route(
            "/api/v1/integrations/{integration_id}/credentials",
            auth.wrap_with_auth(self.replace_credentials),
            methods=["PUT"],
        )
        app.add_api_route(
            "/api/v1/integrations/{integration_id}",
            auth.wrap_with_auth(self.delete_integration),
            methods=["DELETE"],
        )
        app.add_api_route(
            "/api/v1/integrations/{integration_id}/sync",
            auth.wrap_with_auth(self.trigger_sync, AuthOptions.build(quota_action=QuotaAction.SYNC)),
            methods=["POST"],
        )
        app.add_api_route(
            "/api/v1/webhooks/{integration_id}",
            self.receive_webhook,
            methods=["POST"],
        )

    async def _owned_integration(self, request: Request, principal: Principal) -> Optional[Dict[str, Any]]:
        integration = await self.integration_store.get(request.path_params["integration_id"])
        if integration is None or integration.get("userId") != principal.user_id:
            return None
        return integration

    async def get_me(self, request: Request, principal: Principal) -> Response:
        """Current principal with remaining plan allowance."""
        return JSONResponse({
            "user": principal.to_public_dict(),
            "quota": self.quota_engine.usage_summary(principal),
        })

    async def list_integrations(self, request: Request, principal: Principal) -> Response:
        integrations = await self.integration_store.list_for_user(principal.user_id)
        return JSONResponse({
            "integrations": [
                IntegrationResponse(
                    id=item["_id"],
                    name=item["name"],
                    source_type=item["source"]["type"],
                    destination_type=item["destination"]["type"],
                    status=item["status"],
                ).model_dump(by_alias=True)
                for item in integrations
            ]
        })

    async def create_integration(self, request: Request, principal: Principal) -> Response:
        """Validate and seal both credential sets, then store the integration."""
        payload = await read_model(request, IntegrationCreateRequest)
        type_errors = payload.connector_type_errors()
        if type_errors:
            raise ValidationError("Unsupported connector type", details={"errors": type_errors})

        source_token = self.vault.seal_connector({**payload.source.credentials, "type": payload.source.type})
        destination_token = self.vault.seal_connector(
            {**payload.destination.credentials, "type": payload.destination.type}
        )

        integration = await self.integration_store.create({
            "userId": principal.user_id,
            "name": payload.name,
            "source": {"type": payload.source.type, "config": payload.source.config, "credentials": source_token},
            "destination": {
                "type": payload.destination.type,
                "config": payload.destination.config,
                "credentials": destination_token,
            },
            "mapping": [m.model_dump(by_alias=True) for m in payload.mapping],
            "syncConfig": payload.sync_config.model_dump(),
            "status": "setup",
        })
        await self.user_repository.increment_usage(principal.user_id, "integrationsCount", 1)

        self.logger.info(
            "Integration created",
            integration_id=integration["_id"],
            source=payload.source.type,
            destination=payload.destination.type,
        )
        body = IntegrationResponse(
            id=integration["_id"],
            name=integration["name"],
            source_type=payload.source.type,
            destination_type=payload.destination.type,
            status=integration["status"],
        )
        return JSONResponse(status_code=201, content=body.model_dump(by_alias=True))

    async def read_credentials(self, request: Request, principal: Principal) -> Response:
        """Open the sealed credentials of an owned integration and return them masked."""
        integration = await self._owned_integration(request, principal)
        if integration is None:
            return JSONResponse(status_code=404, content={"error": "Integration not found"})

        source = self.vault.open_connector(integration["source"]["credentials"], integration["source"]["type"])
        destination = self.vault.open_connector(
            integration["destination"]["credentials"], integration["destination"]["type"]
        )
        body = MaskedCredentialsResponse(
            id=integration["_id"],
            source=mask_credentials(source.model_dump(exclude_none=True)),
            destination=mask_credentials(destination.model_dump(exclude_none=True)),
        )
        return JSONResponse(body.model_dump())

    async def replace_credentials(self, request: Request, principal: Principal) -> Response:
        """Reconfigure one side: a new sealed token replaces the old one."""
        integration = await self._owned_integration(request, principal)
        if integration is None:
            return JSONResponse(status_code=404, content={"error": "Integration not found"})

        payload = await read_model(request, CredentialsUpdateRequest)
        side = dict(integration[payload.side])
        side["credentials"] = self.vault.seal_connector({**payload.credentials, "type": side["type"]})
        await self.integration_store.update(integration["_id"], {payload.side: side})

        self.logger.info("Integration credentials replaced", integration_id=integration["_id"], side=payload.side)
        return JSONResponse({"id": integration["_id"], "updated": payload.side})

    async def delete_integration(self, request: Request, principal: Principal) -> Response:
        """Delete an integration together with its sealed credentials."""
        integration = await self._owned_integration(request, principal)
        if integration is None:
            return JSONResponse(status_code=404, content={"error": "Integration not found"})

        # Only the request that actually removed the record releases the quota slot
        if not await self.integration_store.delete(integration["_id"]):
            return JSONResponse(status_code=404, content={"error": "Integration not found"})
        await self.user_repository.increment_usage(principal.user_id, "integrationsCount", -1)
        self.logger.info("Integration deleted", integration_id=integration["_id"])
        return Response(status_code=204)

    async def trigger_sync(self, request: Request, principal: Principal) -> Response:
        """Accept a manual sync; connector execution happens elsewhere."""
        integration = await self._owned_integration(request, principal)
        if integration is None:
            return JSONResponse(status_code=404, content={"error": "Integration not found"})

        await self.user_repository.increment_usage(principal.user_id, "syncsThisMonth", 1)
        self.logger.info("Sync accepted", integration_id=integration["_id"])
        return JSONResponse(status_code=202, content={"id": integration["_id"], "status": "accepted"})

    async def receive_webhook(self, request: Request) -> Response:
        """Inbound provider webhook, authenticated by HMAC signature instead of a session."""
        integration_id = request.path_params["integration_id"]
        decision = self.rate_limiter.check_rate(f"{WEBHOOK_RATE_KEY_PREFIX}{integration_id}")
        self.metrics.record_access_decision("webhook_rate_limit", decision.allowed)
        if not decision.allowed:
            limited = RateLimited(reset_time=decision.reset_time)
            retry_after = self.auth.retry_after_seconds(decision.reset_time)
            return error_response(limited, headers={"Retry-After": str(retry_after)})

        integration = await self.integration_store.get(integration_id)
        if integration is None:
            return JSONResponse(status_code=404, content={"error": "Integration not found"})

        owner = await self.user_repository.find_by_id(integration["userId"])
        if owner is None or not self.quota_engine.has_feature(Principal.from_record(owner), "webhooks"):
            return JSONResponse(
                status_code=403,
                content={"error": "Webhooks not available on this plan", "required": sorted(WEBHOOK_PLANS)},
            )

        credentials = self.vault.open(integration["source"]["credentials"])
        secret = credentials.get("webhook_secret") or credentials.get("secret")
        if not secret:
            return JSONResponse(status_code=400, content={"error": "Integration has no webhook secret"})

        payload = await request.body()
        if not verify_webhook_signature(payload, request.headers.get("X-Signature", ""), secret):
            self.logger.warning("Webhook signature mismatch", integration_id=integration["_id"])
            return JSONResponse(status_code=401, content={"error": "Invalid signature"})

        return JSONResponse(status_code=202, content={"status": "accepted"})


def create_app(
    settings: Optional[AccessSettings] = None,
    secret_store: Optional[SecretStore] = None,
    session_store: Optional[SessionStore] = None,
    user_repository: Optional[UserRepository] = None,
    **kwargs: Any,
) -> FastAPI:
    """Build the FastAPI app; raises ConfigurationError when key material is bad."""
    service = AccessService(
        settings=settings,
        secret_store=secret_store,
        session_store=session_store,
        user_repository=user_repository,
        **kwargs,
    )
    return service.app
