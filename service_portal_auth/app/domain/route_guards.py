"""
Navigation guards for the portal's authenticated areas.
"""

from dataclasses import dataclass
from typing import FrozenSet, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..adapters.supabase_client import PortalUser, SupabaseAuthClient
from .authorization_gate import ADMIN_ROLES, PORTAL_ROLES, AuthorizationGate, Authorized


@dataclass(frozen=True)
class GuardDecision:
    """Either let the navigation through with the portal user, or redirect."""
    user: Optional[PortalUser] = None
    redirect_to: Optional[str] = None
    signed_out: bool = False

    @property
    def allowed(self) -> bool:
        return self.user is not None and self.redirect_to is None


class RouteGuards:
    """General-area and admin-only guards.

    Both sign the session out when the proven email has no portal user, so
    the identity provider and the portal never disagree on whether a
    session is usable. A role outside the allowed set only redirects.
    """

    def __init__(self,
                 auth_client: SupabaseAuthClient,
                 gate: AuthorizationGate,
                 login_path: str = "/login",
                 general_area_path: str = "/admin",
                 metrics: Optional[MetricsCollector] = None):
        self.auth_client = auth_client
        self.gate = gate
        self.login_path = login_path
        self.general_area_path = general_area_path
        self.metrics = metrics
        self.logger = get_logger("portal_auth.route_guards")

    async def require_portal_user(self, access_token: Optional[str]) -> GuardDecision:
        """Guard for every authenticated area (admin, editor, author)."""
        return await self._guard(access_token, PORTAL_ROLES, self.login_path, "general")

    async def require_admin(self, access_token: Optional[str]) -> GuardDecision:
        """Guard for admin-only areas; other portal roles go back to the general area."""
        return await self._guard(access_token, ADMIN_ROLES, self.general_area_path, "admin")

    async def _guard(self, access_token: Optional[str], allowed_roles: FrozenSet[str],
                     role_redirect: str, surface: str) -> GuardDecision:
        if not access_token:
            return GuardDecision(redirect_to=self.login_path)

        try:
            provider_user = await self.auth_client.get_user(access_token)
            if provider_user is None:
                return GuardDecision(redirect_to=self.login_path)

            result = await self.gate.authorize(
                provider_user["email"],
                allowed_roles,
                access_token=access_token
            )
        except Exception as e:
            self.logger.error(
                "Guard check failed",
                surface=surface,
                error=str(e),
                error_type=type(e).__name__
            )
            return GuardDecision(redirect_to=self.login_path)

        if isinstance(result, Authorized):
            return GuardDecision(user=result.user)

        if result.user_missing:
            signed_out = await self._terminate_session(access_token, surface)
            return GuardDecision(redirect_to=self.login_path, signed_out=signed_out)

        return GuardDecision(redirect_to=role_redirect)

    async def _terminate_session(self, access_token: str, surface: str) -> bool:
        try:
            await self.auth_client.sign_out(access_token)
        except Exception as e:
            self.logger.error("Forced sign-out failed", surface=surface, error=str(e))
            return False
        if self.metrics is not None:
            self.metrics.increment_counter("forced_sign_outs_total", surface=surface)
        return True
