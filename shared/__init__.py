"""
Shared utilities for the News Portal Access Layer.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry helpers for idempotent upstream calls
- circuit_breaker: Resilient external call protection

Any cross-service logic should live here to avoid import cycles across
service packages. Only test_helpers may import from service packages.
"""
