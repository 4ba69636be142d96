"""
Portal Auth Service package for the News Portal Access Layer.

The only component of the news portal backend with logic of its own; all
article, category and upload handling is a direct pass-through to Supabase.

- app.main: FastAPI app wiring login, verification, logout and guarded
  navigation routes.
- app.ratelimit: per-client failed-login state machine and its stores.
- app.domain: client identification, authorization gate, login
  orchestration, session checks and route guards.
- app.adapters: Supabase identity provider and data API clients.

Design notes:
- Module import must not perform network calls.
- Collaborators are constructed explicitly and injected; there is no
  module-level limiter state.
"""
