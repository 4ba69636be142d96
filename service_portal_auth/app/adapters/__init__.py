"""
Adapters package for the Portal Auth Service.

HTTP clients for the managed backend (Supabase). These adapters encapsulate:

- Base URLs, API keys and request shapes
- Timeouts, retry policies and circuit breakers
- Mapping of transport failures onto shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .supabase_client import (
    AuthenticatedIdentity,
    PortalUser,
    PortalUserStore,
    ProviderSession,
    SupabaseAuthClient,
)

__all__ = [
    "AuthenticatedIdentity",
    "PortalUser",
    "PortalUserStore",
    "ProviderSession",
    "SupabaseAuthClient",
]
