"""
Portal Auth service for the News Portal Access Layer.
"""

from typing import Any, Dict, Optional

import httpx
from fastapi import Header, Request
from fastapi.responses import RedirectResponse

from shared.base_service import BaseService
from shared.logging import set_client_context
from .adapters.supabase_client import PortalUserStore, SupabaseAuthClient
from .domain.authorization_gate import AuthorizationGate
from .domain.client_identity import resolve_client_id
from .domain.login import LoginService
from .domain.route_guards import GuardDecision, RouteGuards
from .domain.session import BEARER_PREFIX, SessionService
from .ratelimit import Clock, LoginRateLimiter, RateLimitStore, SystemClock, build_rate_limit_store
from .security_headers import SecurityHeadersMiddleware, build_security_headers


class PortalAuthService(BaseService):
    """Login, session verification and navigation guards for the portal.

    Collaborators can be injected (tests, alternative backends); anything
    left as None is built from configuration.
    """

    def __init__(self,
                 rate_limit_store: Optional[RateLimitStore] = None,
                 auth_client: Optional[SupabaseAuthClient] = None,
                 user_store: Optional[PortalUserStore] = None,
                 clock: Optional[Clock] = None,
                 supabase_transport: Optional[httpx.AsyncBaseTransport] = None,
                 **config_overrides: Any):
        super().__init__("portal_auth", 8020, **config_overrides)
        self.clock = clock or SystemClock()

        client_options = dict(
            base_url=self.config.supabase_url,
            api_key=self.config.supabase_anon_key,
            timeout=self.config.identity_timeout_seconds,
            retry_attempts=self.config.identity_retry_attempts,
            failure_threshold=self.config.identity_failure_threshold,
            recovery_timeout=self.config.identity_recovery_timeout_seconds,
            transport=supabase_transport,
            metrics=self.metrics,
        )
        self.auth_client = auth_client or SupabaseAuthClient(**client_options)
        self.user_store = user_store or PortalUserStore(**client_options)

        self.rate_limit_store = rate_limit_store or build_rate_limit_store(
            self.config.rate_limit_backend,
            self.config.redis_url,
            self.clock
        )
        self.rate_limiter = LoginRateLimiter(
            self.rate_limit_store,
            max_attempts=self.config.login_max_attempts,
            attempt_window=self.config.login_attempt_window_seconds,
            block_duration=self.config.login_block_duration_seconds,
            clock=self.clock
        )

        self.gate = AuthorizationGate(self.user_store)
        self.login_service = LoginService(
            self.rate_limiter,
            self.auth_client,
            self.user_store,
            self.gate,
            metrics=self.metrics
        )
        self.session_service = SessionService(self.auth_client, self.gate)
        self.route_guards = RouteGuards(
            self.auth_client,
            self.gate,
            login_path=self.config.login_path,
            general_area_path=self.config.general_area_path,
            metrics=self.metrics
        )

        self.app.add_middleware(
            SecurityHeadersMiddleware,
            identity_domains=self.config.csp_identity_domains
        )
        # unhandled errors are rendered by ServerErrorMiddleware, outside the stack above
        self.error_headers = build_security_headers(self.config.csp_identity_domains)

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.rate_limit_store.close()

        self._setup_auth_routes()
        self._setup_guarded_routes()

        self.app.state.portal_auth_service = self

    def _session_token(self, request: Request) -> Optional[str]:
        """Bearer header first, then the session cookie."""
        authorization = request.headers.get("Authorization")
        if authorization and authorization.startswith(BEARER_PREFIX):
            return authorization[len(BEARER_PREFIX):].strip() or None
        return request.cookies.get(self.config.session_cookie_name)

    def _guard_response(self, decision: GuardDecision, area: str):
        if not decision.allowed:
            return RedirectResponse(url=decision.redirect_to, status_code=303)
        return {"area": area, "user": decision.user.model_dump()}

    def _setup_auth_routes(self):
        """Set up login, verification and logout routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "portal_auth",
                "message": "News Portal Access Layer - Portal Auth Service",
                "version": "1.0.0"
            }

        @self.app.post("/api/auth/login")
        async def login(request: Request):
            """Rate-limited, fail-closed login."""
            client_id = resolve_client_id(request.headers)
            set_client_context(client_id)

            try:
                payload = await request.json()
            except ValueError:
                payload = None

            result = await self.login_service.login(
                client_id,
                payload,
                user_agent=request.headers.get("User-Agent")
            )
            return result.to_response()

        @self.app.get("/api/auth/verify")
        async def verify(authorization: Optional[str] = Header(default=None)):
            """Check a bearer token against the identity provider and portal users."""
            return await self.session_service.verify(authorization)

        @self.app.post("/api/auth/logout")
        async def logout(authorization: Optional[str] = Header(default=None)):
            """Revoke the caller's provider session."""
            return await self.session_service.logout(authorization)

    def _setup_guarded_routes(self):
        """Navigation entry points protected by the route guards."""

        @self.app.get("/admin")
        async def general_area(request: Request):
            decision = await self.route_guards.require_portal_user(self._session_token(request))
            return self._guard_response(decision, "general")

        @self.app.get("/admin/users")
        async def admin_area(request: Request):
            decision = await self.route_guards.require_admin(self._session_token(request))
            return self._guard_response(decision, "admin")

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check portal auth dependencies."""
        return {
            "rate_limit_store": "ok" if await self.rate_limit_store.ping() else "error",
            "identity_provider": self.auth_client.circuit_breaker.get_state()["state"],
            "user_store": self.user_store.circuit_breaker.get_state()["state"],
        }


def create_app(**kwargs: Any):
    """Create FastAPI application."""
    service = PortalAuthService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = PortalAuthService()
    service.run()
