"""
Integration tests for the portal login flow against the mock Supabase server.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from mocks.supabase.server import MockSupabaseServer
from service_portal_auth.app.main import PortalAuthService
from service_portal_auth.app.ratelimit import InMemoryRateLimitStore
from shared.test_helpers import FakeClock, TestDataFactory

ACCOUNTS = {account.email: account for account in TestDataFactory.create_accounts()}


class TestLoginFlow:
    """End-to-end login, verification and guard behaviour."""

    @pytest.fixture
    def supabase(self):
        return MockSupabaseServer()

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def service(self, supabase, clock):
        return PortalAuthService(
            rate_limit_store=InMemoryRateLimitStore(clock),
            clock=clock,
            supabase_transport=httpx.ASGITransport(app=supabase.app),
            supabase_url="http://supabase.test",
            supabase_anon_key="anon-key",
        )

    @pytest.fixture
    def client(self, service):
        return TestClient(service.app, follow_redirects=False)

    def _login(self, client, email, password, ip="1.2.3.4"):
        return client.post(
            "/api/auth/login",
            json={"email": email, "password": password},
            headers={"CF-Connecting-IP": ip, "User-Agent": "integration-test"}
        )

    def test_complete_login_flow(self, client, supabase):
        admin = ACCOUNTS["admin@portal.test"]

        # 1. Login
        login_response = self._login(client, admin.email, admin.password)
        assert login_response.status_code == 200
        data = login_response.json()
        assert data["user"] == {"id": admin.user_id, "email": admin.email, "name": admin.name, "role": "admin"}
        token = data["session"]["access_token"]

        # 2. Audit trail written
        assert supabase.audit_logs == [{
            "user_id": admin.user_id,
            "action": "login",
            "ip_address": "1.2.3.4",
            "user_agent": "integration-test",
            "details": {"email": admin.email, "role": "admin"},
        }]

        # 3. Verify the session
        verify_response = client.get("/api/auth/verify", headers={"Authorization": f"Bearer {token}"})
        assert verify_response.status_code == 200
        assert verify_response.json()["user"]["role"] == "admin"

        # 4. Admin-only area
        admin_response = client.get("/admin/users", headers={"Authorization": f"Bearer {token}"})
        assert admin_response.status_code == 200

        # 5. Logout revokes the session
        assert client.post("/api/auth/logout", headers={"Authorization": f"Bearer {token}"}).status_code == 200
        assert client.get("/api/auth/verify", headers={"Authorization": f"Bearer {token}"}).status_code == 401

    def test_scenario_a_fifth_attempt_succeeds(self, client, service):
        editor = ACCOUNTS["editor@portal.test"]
        for _ in range(4):
            assert self._login(client, editor.email, "wrong-password").status_code == 401

        assert self._login(client, editor.email, editor.password).status_code == 200

    def test_scenario_b_sixth_attempt_rejected_before_credentials(self, client, supabase):
        editor = ACCOUNTS["editor@portal.test"]
        for _ in range(5):
            self._login(client, editor.email, "wrong-password")
        calls_before = supabase.sign_in_calls

        response = self._login(client, editor.email, editor.password)

        assert response.status_code == 429
        assert supabase.sign_in_calls == calls_before

    def test_scenario_c_identity_without_portal_user(self, client, supabase, service):
        outsider = ACCOUNTS["outsider@portal.test"]

        response = self._login(client, outsider.email, outsider.password)

        assert response.status_code == 403
        assert response.json()["message"] == "User not authorized to access the portal"
        assert len(supabase.revoked_tokens) == 1
        assert supabase.audit_logs == []

    def test_scenario_d_author_on_admin_surface(self, client, supabase):
        author = ACCOUNTS["author@portal.test"]
        token = self._login(client, author.email, author.password).json()["session"]["access_token"]

        response = client.get("/admin/users", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 303
        assert response.headers["location"] == "/admin"
        assert not supabase.is_revoked(token)
        assert client.get("/admin", headers={"Authorization": f"Bearer {token}"}).status_code == 200

    def test_scenario_e_malformed_email(self, client, supabase):
        response = self._login(client, "not-an-email", "whatever")

        assert response.status_code == 400
        assert supabase.sign_in_calls == 0

    def test_unknown_account_and_wrong_password_look_identical(self, client):
        editor = ACCOUNTS["editor@portal.test"]

        wrong_password = self._login(client, editor.email, "nope", ip="10.0.0.1")
        unknown_account = self._login(client, "ghost@portal.test", "nope", ip="10.0.0.2")

        assert wrong_password.status_code == unknown_account.status_code == 401
        assert wrong_password.json()["message"] == unknown_account.json()["message"]

    def test_missing_audit_table_does_not_fail_login(self, client, supabase):
        supabase.audit_table_enabled = False
        editor = ACCOUNTS["editor@portal.test"]

        assert self._login(client, editor.email, editor.password).status_code == 200

    def test_guard_signs_out_removed_portal_user(self, client, supabase):
        editor = ACCOUNTS["editor@portal.test"]
        token = self._login(client, editor.email, editor.password).json()["session"]["access_token"]
        supabase.portal_users = [u for u in supabase.portal_users if u["email"] != editor.email]

        response = client.get("/admin", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 303
        assert response.headers["location"] == "/login"
        assert supabase.is_revoked(token)

    def test_malformed_portal_row_revokes_new_session(self, client, supabase):
        editor = ACCOUNTS["editor@portal.test"]
        for row in supabase.portal_users:
            if row["email"] == editor.email:
                row["role"] = None

        response = self._login(client, editor.email, editor.password)

        assert response.status_code == 500
        assert response.json()["message"] == "Internal server error"
        assert len(supabase.revoked_tokens) == 1

    def test_health_reports_dependencies(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["dependencies"] == {
            "rate_limit_store": "ok",
            "identity_provider": "closed",
            "user_store": "closed",
        }
