"""
Unit tests for the authorization gate.
"""

import pytest

from service_portal_auth.app.domain.authorization_gate import (
    ADMIN_ROLES,
    NOT_FOUND,
    PORTAL_ROLES,
    ROLE_NOT_ALLOWED,
    AuthorizationGate,
    Authorized,
    Unauthorized,
)
from shared.errors import ExternalServiceError
from shared.test_helpers import create_mock_user_store, create_portal_user


class TestAuthorizationGate:
    """Test cases for AuthorizationGate."""

    @pytest.mark.asyncio
    async def test_missing_user_is_unauthorized(self):
        gate = AuthorizationGate(create_mock_user_store(None))

        result = await gate.authorize("user@x.com")

        assert isinstance(result, Unauthorized)
        assert result.reason == NOT_FOUND
        assert result.user_missing is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", ["admin", "editor", "author"])
    async def test_portal_roles_are_authorized(self, role):
        user = create_portal_user(role=role)
        gate = AuthorizationGate(create_mock_user_store(user))

        result = await gate.authorize("user@x.com", PORTAL_ROLES)

        assert result == Authorized(user=user)

    @pytest.mark.asyncio
    async def test_role_outside_allowed_set(self):
        user = create_portal_user(role="author")
        gate = AuthorizationGate(create_mock_user_store(user))

        result = await gate.authorize("user@x.com", ADMIN_ROLES)

        assert isinstance(result, Unauthorized)
        assert result.reason == ROLE_NOT_ALLOWED
        assert result.user == user
        assert result.user_missing is False

    @pytest.mark.asyncio
    async def test_unknown_role_is_not_a_portal_role(self):
        gate = AuthorizationGate(create_mock_user_store(create_portal_user(role="subscriber")))

        result = await gate.authorize("user@x.com")

        assert isinstance(result, Unauthorized)

    @pytest.mark.asyncio
    async def test_lookup_uses_exact_email_and_token(self):
        store = create_mock_user_store(create_portal_user())
        gate = AuthorizationGate(store)

        await gate.authorize("User@X.com", access_token="tok")

        store.find_by_email.assert_awaited_once_with("User@X.com", access_token="tok")

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self):
        store = create_mock_user_store()
        store.find_by_email.side_effect = ExternalServiceError("user_store", "down")
        gate = AuthorizationGate(store)

        with pytest.raises(ExternalServiceError):
            await gate.authorize("user@x.com")

    @pytest.mark.asyncio
    async def test_gate_never_creates_users(self):
        store = create_mock_user_store(None)
        gate = AuthorizationGate(store)

        await gate.authorize("new@x.com")

        store.find_by_email.assert_awaited_once()
        store.insert_audit_log.assert_not_called()
