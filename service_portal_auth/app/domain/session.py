"""
Session verification and logout for bearer tokens issued at login.
"""

from typing import Any, Dict, Optional

from shared.errors import (
    AccessLayerException,
    AuthenticationError,
    ExternalServiceError,
    InternalError,
    NotAuthorizedError,
)
from shared.logging import get_logger
from ..adapters.supabase_client import SupabaseAuthClient
from .authorization_gate import PORTAL_ROLES, AuthorizationGate, Authorized

BEARER_PREFIX = "Bearer "


def extract_bearer_token(authorization: Optional[str]) -> str:
    """Pull the token out of an ``Authorization`` header or raise 401."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise AuthenticationError("Authentication token required")
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise AuthenticationError("Authentication token required")
    return token


class SessionService:
    """Re-validates a provider session against the portal user store."""

    def __init__(self, auth_client: SupabaseAuthClient, gate: AuthorizationGate):
        self.auth_client = auth_client
        self.gate = gate
        self.logger = get_logger("portal_auth.session")

    async def verify(self, authorization: Optional[str]) -> Dict[str, Any]:
        token = extract_bearer_token(authorization)

        try:
            provider_user = await self.auth_client.get_user(token)
            if provider_user is None:
                raise AuthenticationError("Invalid or expired token")

            result = await self.gate.authorize(provider_user["email"], PORTAL_ROLES, access_token=token)
            if not isinstance(result, Authorized):
                raise NotAuthorizedError("User not authorized")
        except ExternalServiceError as e:
            self.logger.error("Session verification failed", error=str(e))
            raise InternalError("Error verifying session") from e
        except AccessLayerException:
            raise
        except Exception as e:
            self.logger.error("Unexpected session verification error", error=str(e), exc_info=True)
            raise InternalError("Error verifying session") from e

        return {"valid": True, "user": result.user.model_dump()}

    async def logout(self, authorization: Optional[str]) -> Dict[str, Any]:
        token = extract_bearer_token(authorization)
        try:
            await self.auth_client.sign_out(token)
        except ExternalServiceError as e:
            self.logger.error("Logout failed", error=str(e))
            raise InternalError() from e
        return {"success": True}
