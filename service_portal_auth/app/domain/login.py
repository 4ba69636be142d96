"""
Login orchestration.

Order matters:

1. the limiter is consulted before the request body is trusted, so a
   blocked client learns nothing about any account;
2. malformed input is rejected before any backend call;
3. credential failures are counted against the client identifier, not the
   target email, so an attacker cannot lock a legitimate user out;
4. a proven identity still needs a portal user, otherwise the fresh
   provider session is revoked on the spot.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from shared.errors import (
    AccessLayerException,
    ExternalServiceError,
    InternalError,
    InvalidCredentialsError,
    NotAuthorizedError,
    RateLimitError,
    ValidationError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..adapters.supabase_client import (
    AuthenticatedIdentity,
    PortalUser,
    PortalUserStore,
    SupabaseAuthClient,
)
from ..ratelimit import LoginRateLimiter
from .authorization_gate import PORTAL_ROLES, AuthorizationGate, Authorized

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class LoginResult:
    user: PortalUser
    identity: AuthenticatedIdentity

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "user": self.user.model_dump(),
            "session": self.identity.session.model_dump(),
        }


def validate_login_payload(payload: Any) -> Dict[str, str]:
    """Return ``{"email", "password"}`` or raise ``ValidationError``."""
    if not isinstance(payload, dict):
        raise ValidationError("Email and password are required")

    email = payload.get("email")
    password = payload.get("password")
    if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
        raise ValidationError("Email and password are required")

    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email format")

    return {"email": email, "password": password}


class LoginService:
    """Brute-force-protected, fail-closed portal login."""

    def __init__(self,
                 rate_limiter: LoginRateLimiter,
                 auth_client: SupabaseAuthClient,
                 user_store: PortalUserStore,
                 gate: AuthorizationGate,
                 metrics: Optional[MetricsCollector] = None):
        self.rate_limiter = rate_limiter
        self.auth_client = auth_client
        self.user_store = user_store
        self.gate = gate
        self.metrics = metrics
        self.logger = get_logger("portal_auth.login")
        self.audit = get_logger("portal_auth.audit")

    def _outcome(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_login_outcome(outcome)

    async def login(self, client_id: str, payload: Any,
                    user_agent: Optional[str] = None) -> LoginResult:
        decision = await self.rate_limiter.check_rate_limit(client_id)
        if not decision.allowed:
            wait = self.rate_limiter.wait_minutes(decision)
            self.audit.warning("Login rejected by rate limiter", client_id=client_id, wait_minutes=wait)
            self._outcome("rate_limited")
            if self.metrics is not None:
                self.metrics.increment_counter("rate_limit_denials_total")
            raise RateLimitError(wait)

        credentials = validate_login_payload(payload)
        email = credentials["email"]

        try:
            return await self._authenticate(client_id, email, credentials["password"], user_agent)
        except AccessLayerException as e:
            if isinstance(e, ExternalServiceError):
                self.logger.error("Login backend failure", email=email, client_id=client_id, error=str(e))
                self._outcome("error")
                raise InternalError() from e
            raise
        except Exception as e:
            self.logger.error(
                "Unexpected login error",
                email=email,
                client_id=client_id,
                error=str(e),
                exc_info=True
            )
            self._outcome("error")
            raise InternalError() from e

    async def _authenticate(self, client_id: str, email: str, password: str,
                            user_agent: Optional[str]) -> LoginResult:
        try:
            identity = await self.auth_client.sign_in_with_password(email, password)
        except InvalidCredentialsError:
            await self.rate_limiter.record_failed_attempt(client_id)
            self.audit.warning("Failed login attempt", email=email, client_id=client_id)
            self._outcome("invalid_credentials")
            raise

        access_token = identity.session.access_token
        email = identity.email
        try:
            result = await self.gate.authorize(email, PORTAL_ROLES, access_token=access_token)
        except Exception:
            # a provider session must not outlive a failed portal lookup
            await self._terminate_session(access_token, email)
            raise

        if not isinstance(result, Authorized):
            await self._terminate_session(access_token, email)
            self.audit.warning(
                "Login denied: no authorized portal user",
                email=email,
                client_id=client_id,
                reason=result.reason
            )
            self._outcome("not_authorized")
            raise NotAuthorizedError()

        user = result.user
        await self.rate_limiter.clear_attempts(client_id)
        self.audit.info("Successful login", email=email, role=user.role, client_id=client_id)
        self._outcome("success")

        await self._write_audit_log(user, client_id, user_agent, access_token)
        return LoginResult(user=user, identity=identity)

    async def _terminate_session(self, access_token: str, email: str) -> None:
        try:
            await self.auth_client.sign_out(access_token)
        except Exception as e:
            self.logger.error("Forced sign-out failed", email=email, error=str(e))
            return
        if self.metrics is not None:
            self.metrics.increment_counter("forced_sign_outs_total", surface="login")

    async def _write_audit_log(self, user: PortalUser, client_id: str,
                               user_agent: Optional[str], access_token: str) -> None:
        """Best-effort insert into ``audit_logs``; never fails the login."""
        entry = {
            "user_id": user.id,
            "action": "login",
            "ip_address": client_id,
            "user_agent": user_agent,
            "details": {"email": user.email, "role": user.role},
        }
        try:
            await self.user_store.insert_audit_log(entry, access_token=access_token)
        except Exception as e:
            self.logger.debug("Audit log write skipped", error=str(e))
