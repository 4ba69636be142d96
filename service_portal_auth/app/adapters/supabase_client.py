"""
Supabase clients for the Portal Auth service.

``SupabaseAuthClient`` talks to the identity provider (GoTrue) and
``PortalUserStore`` to the data API (PostgREST) holding the ``usuarios`` and
``audit_logs`` tables. Both share one transport policy: bounded timeout,
a circuit breaker per backend and, for idempotent reads only, retries on
transport failures.
"""

from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import ExternalServiceError, InvalidCredentialsError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, retry_call


class PortalUser(BaseModel):
    """Row of the ``usuarios`` table as seen by the authorization gate."""
    id: str
    email: str
    name: Optional[str] = None
    role: str


class ProviderSession(BaseModel):
    """Session issued by the identity provider, passed through opaquely."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    expires_at: Optional[int] = None
    token_type: str = "bearer"


class AuthenticatedIdentity(BaseModel):
    """Proof of identity for one request."""
    user_id: str
    email: str
    session: ProviderSession


class UpstreamServiceError(Exception):
    """5xx from a Supabase endpoint."""

    def __init__(self, status_code: int):
        super().__init__(f"upstream returned {status_code}")
        self.status_code = status_code


class SupabaseRestClient:
    """Shared HTTP plumbing for the Supabase APIs."""

    service_name = "supabase"

    def __init__(self,
                 base_url: str,
                 api_key: str,
                 timeout: float = 10.0,
                 retry_attempts: int = 2,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.metrics = metrics
        self._transport = transport
        self.logger = get_logger(f"portal_auth.{self.service_name}")
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            tracked_exceptions=(httpx.TransportError, UpstreamServiceError),
            name=self.service_name
        )
        self.retry_config = RetryConfig(
            max_attempts=retry_attempts,
            base_delay=0.2,
            max_delay=1.0,
        )

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token or self.api_key}",
        }

    async def _request(self, operation: str, method: str, path: str, *,
                       access_token: Optional[str] = None,
                       idempotent: bool = False,
                       headers: Optional[Dict[str, str]] = None,
                       **kwargs: Any) -> httpx.Response:
        """Send one request and return any non-5xx response.

        Transport failures, 5xx answers and an open breaker all surface as
        ``ExternalServiceError``; 4xx responses are returned for the caller
        to interpret.
        """
        request_headers = self._headers(access_token)
        if headers:
            request_headers.update(headers)

        async def _send() -> httpx.Response:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport
            ) as client:
                response = await client.request(method, path, headers=request_headers, **kwargs)
            if response.status_code >= 500:
                raise UpstreamServiceError(response.status_code)
            return response

        async def _guarded() -> httpx.Response:
            return await self.circuit_breaker.call(_send)

        try:
            if self.metrics is not None:
                with self.metrics.time_operation("identity_call_duration_seconds", operation=operation):
                    return await self._dispatch(_guarded, idempotent)
            return await self._dispatch(_guarded, idempotent)
        except (RetryError, httpx.TransportError, UpstreamServiceError, CircuitBreakerOpenException) as e:
            cause = e.last_exception if isinstance(e, RetryError) else e
            self.logger.error(
                "Supabase call failed",
                operation=operation,
                error=str(cause),
                error_type=type(cause).__name__
            )
            raise ExternalServiceError(self.service_name, f"{operation} unavailable") from e

    async def _dispatch(self, guarded, idempotent: bool) -> httpx.Response:
        if idempotent:
            return await retry_call(
                guarded,
                exceptions=(httpx.TransportError, UpstreamServiceError),
                config=self.retry_config
            )
        return await guarded()


class SupabaseAuthClient(SupabaseRestClient):
    """Identity provider client (GoTrue ``/auth/v1``)."""

    service_name = "identity_provider"

    async def sign_in_with_password(self, email: str, password: str) -> AuthenticatedIdentity:
        """Exchange credentials for a session.

        Never retried. Any 4xx is reported as ``InvalidCredentialsError``
        without distinguishing an unknown account from a wrong password.
        """
        response = await self._request(
            "sign_in",
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if response.status_code != 200:
            raise InvalidCredentialsError()

        try:
            payload = response.json()
            user = payload.get("user") or {}
            return AuthenticatedIdentity(
                user_id=str(user["id"]),
                email=user.get("email") or email,
                session=ProviderSession(**{
                    key: payload[key]
                    for key in ProviderSession.model_fields
                    if key in payload
                }),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise ExternalServiceError(self.service_name, "malformed sign-in response") from e

    async def get_user(self, access_token: str) -> Optional[Dict[str, Any]]:
        """Resolve a session token to the provider's user, or None if invalid."""
        response = await self._request(
            "get_user",
            "GET",
            "/auth/v1/user",
            access_token=access_token,
            idempotent=True,
        )
        if response.status_code in (401, 403, 404):
            return None
        if response.status_code != 200:
            raise ExternalServiceError(self.service_name, f"get_user returned {response.status_code}")
        try:
            user = response.json()
        except ValueError as e:
            raise ExternalServiceError(self.service_name, "malformed user response") from e
        if not isinstance(user, dict) or not user.get("email"):
            return None
        return user

    async def sign_out(self, access_token: str) -> None:
        """Revoke the session behind ``access_token``.

        An already-invalid token counts as signed out.
        """
        response = await self._request(
            "sign_out",
            "POST",
            "/auth/v1/logout",
            access_token=access_token,
        )
        if response.status_code not in (200, 204, 401, 403, 404):
            raise ExternalServiceError(self.service_name, f"sign_out returned {response.status_code}")


class PortalUserStore(SupabaseRestClient):
    """Data API client for portal users and the audit trail."""

    service_name = "user_store"

    USER_COLUMNS = "id,email,role,name"

    async def find_by_email(self, email: str, access_token: Optional[str] = None) -> Optional[PortalUser]:
        """Look up the portal user whose email matches exactly.

        Anything other than exactly one row means "no portal user".
        """
        response = await self._request(
            "find_portal_user",
            "GET",
            "/rest/v1/usuarios",
            access_token=access_token,
            idempotent=True,
            params={"select": self.USER_COLUMNS, "email": f"eq.{email}"},
        )
        if response.status_code != 200:
            self.logger.warning(
                "Portal user lookup rejected",
                status_code=response.status_code
            )
            return None

        try:
            rows = response.json()
            if not isinstance(rows, list) or len(rows) != 1:
                return None
            return PortalUser(**rows[0])
        except (ValueError, KeyError, TypeError) as e:
            self.logger.error("Malformed portal user row", error=str(e))
            raise ExternalServiceError(self.service_name, "malformed portal user response") from e

    async def insert_audit_log(self, entry: Dict[str, Any], access_token: Optional[str] = None) -> None:
        response = await self._request(
            "insert_audit_log",
            "POST",
            "/rest/v1/audit_logs",
            access_token=access_token,
            headers={"Prefer": "return=minimal"},
            json=entry,
        )
        if response.status_code not in (200, 201, 204):
            raise ExternalServiceError(self.service_name, f"audit insert returned {response.status_code}")
