"""
Domain logic for the Portal Auth Service.

Client identification, the authorization gate and everything built on it
(login orchestration, session verification, navigation guards).
"""

from .authorization_gate import (
    ADMIN_ROLES,
    PORTAL_ROLES,
    AuthorizationGate,
    Authorized,
    Unauthorized,
)
from .client_identity import resolve_client_id
from .login import LoginResult, LoginService
from .route_guards import GuardDecision, RouteGuards
from .session import SessionService

__all__ = [
    "ADMIN_ROLES",
    "PORTAL_ROLES",
    "AuthorizationGate",
    "Authorized",
    "Unauthorized",
    "resolve_client_id",
    "LoginResult",
    "LoginService",
    "GuardDecision",
    "RouteGuards",
    "SessionService",
]
