"""
Static security headers added to every response.
"""

from typing import Dict, Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


def build_security_headers(identity_domains: Iterable[str]) -> Dict[str, str]:
    """Header set for the portal; ``identity_domains`` feed connect-src and media-src."""
    domains = list(identity_domains)
    https_domains = [d for d in domains if not d.startswith("wss://")]
    csp = "; ".join([
        "default-src 'self'",
        "script-src 'self' 'unsafe-inline' 'unsafe-eval'",
        "style-src 'self' 'unsafe-inline'",
        "img-src 'self' data: https: blob:",
        "font-src 'self' data:",
        " ".join(["connect-src 'self'", *domains]),
        " ".join(["media-src 'self'", *https_domains, "blob:"]),
        "frame-ancestors 'none'",
    ])
    return {
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "X-XSS-Protection": "1; mode=block",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
        "Content-Security-Policy": csp,
    }


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Stamp the security header set onto every response."""

    def __init__(self, app, identity_domains: Iterable[str]):
        super().__init__(app)
        self.headers = build_security_headers(identity_domains)

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in self.headers.items():
            response.headers[name] = value
        return response
