"""
Authorization gate shared by the login endpoint, session verification and
the navigation guards.

Identity-provider proof is necessary but not sufficient: a proven email must
also map to exactly one row of the portal user store whose role belongs to
the set allowed for the surface. The gate only decides; terminating the
provider session on ``Unauthorized`` is the caller's job.
"""

from dataclasses import dataclass
from typing import FrozenSet, Optional, Union

from shared.logging import get_logger
from ..adapters.supabase_client import PortalUser, PortalUserStore

PORTAL_ROLES: FrozenSet[str] = frozenset({"admin", "editor", "author"})
ADMIN_ROLES: FrozenSet[str] = frozenset({"admin"})

NOT_FOUND = "not_found"
ROLE_NOT_ALLOWED = "role_not_allowed"


@dataclass(frozen=True)
class Authorized:
    user: PortalUser


@dataclass(frozen=True)
class Unauthorized:
    reason: str
    user: Optional[PortalUser] = None

    @property
    def user_missing(self) -> bool:
        return self.reason == NOT_FOUND


GateResult = Union[Authorized, Unauthorized]


class AuthorizationGate:
    """Membership and role check against the portal user store."""

    def __init__(self, user_store: PortalUserStore):
        self.user_store = user_store
        self.logger = get_logger("portal_auth.authorization_gate")

    async def authorize(self, email: str,
                        allowed_roles: FrozenSet[str] = PORTAL_ROLES,
                        access_token: Optional[str] = None) -> GateResult:
        """Check ``email`` against the store.

        Users are never created here; accounts are provisioned by an admin.
        Store failures propagate as ``ExternalServiceError``.
        """
        user = await self.user_store.find_by_email(email, access_token=access_token)
        if user is None:
            self.logger.warning("Proven identity has no portal user", email=email)
            return Unauthorized(reason=NOT_FOUND)

        if user.role not in allowed_roles:
            self.logger.warning(
                "Portal user role not allowed",
                email=email,
                role=user.role,
                allowed_roles=sorted(allowed_roles)
            )
            return Unauthorized(reason=ROLE_NOT_ALLOWED, user=user)

        return Authorized(user=user)
