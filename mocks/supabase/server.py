"""
Mock Supabase server providing the GoTrue and PostgREST endpoints the portal
auth service calls.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional, List

import jwt
from fastapi import FastAPI, Header, Query, Request, Response
from fastapi.responses import JSONResponse

from shared.logging import get_logger


class MockSupabaseServer:
    """In-memory stand-in for a Supabase project.

    ``accounts`` are identity-provider credentials, ``portal_users`` the rows
    of the ``usuarios`` table. The two are deliberately independent so that a
    proven identity without a portal user can be reproduced.
    """

    def __init__(self, port: int = 54321, audit_table_enabled: bool = True):
        self.port = port
        self.logger = get_logger("mock.supabase")
        self.app = FastAPI(title="Mock Supabase", version="1.0.0")
        self.signing_key = "mock-supabase-jwt-secret-for-local-development"
        self.audit_table_enabled = audit_table_enabled

        self.accounts: Dict[str, Dict[str, str]] = {
            "admin@portal.test": {"id": "auth-admin", "password": "admin-pass-123"},
            "editor@portal.test": {"id": "auth-editor", "password": "editor-pass-123"},
            "author@portal.test": {"id": "auth-author", "password": "author-pass-123"},
            "outsider@portal.test": {"id": "auth-outsider", "password": "outsider-pass-123"},
        }
        self.portal_users: List[Dict[str, Any]] = [
            {"id": "u-1", "email": "admin@portal.test", "name": "Ada Admin", "role": "admin"},
            {"id": "u-2", "email": "editor@portal.test", "name": "Eddie Editor", "role": "editor"},
            {"id": "u-3", "email": "author@portal.test", "name": "Ann Author", "role": "author"},
        ]
        self.audit_logs: List[Dict[str, Any]] = []
        self.revoked_tokens: set = set()
        self.sign_in_calls = 0

        self._setup_routes()

    def _setup_routes(self):
        """Set up mock Supabase routes."""

        @self.app.get("/auth/v1/health")
        async def health():
            return {"name": "GoTrue", "description": "mock"}

        @self.app.post("/auth/v1/token")
        async def token_endpoint(request: Request, grant_type: str = Query(...)):
            """Password grant."""
            self.sign_in_calls += 1
            if grant_type != "password":
                return self._error(400, "unsupported_grant_type", "Unsupported grant type")

            body = await request.json()
            account = self.accounts.get(body.get("email", ""))
            if account is None or account["password"] != body.get("password"):
                return self._error(400, "invalid_grant", "Invalid login credentials")

            return self._issue_session(body["email"], account["id"])

        @self.app.get("/auth/v1/user")
        async def user_endpoint(authorization: Optional[str] = Header(default=None)):
            claims = self._claims(authorization)
            if claims is None:
                return self._error(401, "bad_jwt", "invalid JWT")
            return {"id": claims["sub"], "email": claims["email"], "aud": "authenticated"}

        @self.app.post("/auth/v1/logout")
        async def logout_endpoint(authorization: Optional[str] = Header(default=None)):
            claims = self._claims(authorization)
            if claims is None:
                return self._error(401, "bad_jwt", "invalid JWT")
            self.revoked_tokens.add(claims["session_id"])
            return Response(status_code=204)

        @self.app.get("/rest/v1/usuarios")
        async def select_usuarios(select: str = Query("*"), email: Optional[str] = Query(None)):
            rows = self.portal_users
            if email is not None:
                if not email.startswith("eq."):
                    return self._error(400, "PGRST100", "unsupported filter")
                rows = [row for row in rows if row["email"] == email[3:]]
            if select != "*":
                columns = [c.strip() for c in select.split(",")]
                rows = [{c: row.get(c) for c in columns} for row in rows]
            return rows

        @self.app.post("/rest/v1/audit_logs")
        async def insert_audit_log(request: Request):
            if not self.audit_table_enabled:
                return self._error(404, "42P01", 'relation "public.audit_logs" does not exist')
            self.audit_logs.append(await request.json())
            return Response(status_code=201)

    def _error(self, status_code: int, code: str, message: str) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"code": code, "msg": message})

    def _claims(self, authorization: Optional[str]) -> Optional[Dict[str, Any]]:
        if not authorization or not authorization.startswith("Bearer "):
            return None
        try:
            claims = jwt.decode(
                authorization[7:],
                self.signing_key,
                algorithms=["HS256"],
                audience="authenticated"
            )
        except jwt.InvalidTokenError:
            return None
        if claims.get("session_id") in self.revoked_tokens:
            return None
        return claims

    def _issue_session(self, email: str, user_id: str) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(hours=1)
        session_id = str(uuid.uuid4())
        access_token = jwt.encode(
            {
                "sub": user_id,
                "email": email,
                "aud": "authenticated",
                "role": "authenticated",
                "session_id": session_id,
                "iat": int(now.timestamp()),
                "exp": int(expires_at.timestamp()),
            },
            self.signing_key,
            algorithm="HS256"
        )
        return {
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": 3600,
            "expires_at": int(expires_at.timestamp()),
            "refresh_token": uuid.uuid4().hex,
            "user": {"id": user_id, "email": email, "aud": "authenticated"},
        }

    def is_revoked(self, access_token: str) -> bool:
        """True once ``access_token``'s session has been signed out."""
        return self._claims(f"Bearer {access_token}") is None


def create_app():
    """Create mock Supabase application."""
    server = MockSupabaseServer()
    return server.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=54321)
