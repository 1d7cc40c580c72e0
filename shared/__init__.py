"""
Shared utilities for the auth middleware.

This package aggregates common building blocks consumed by the service
packages:

- config: Base settings via pydantic-settings, YAML/JSON file loading
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI app scaffold (middleware, health, metrics, error handlers)
- test_helpers: Token and CAS response factories for tests

Do not import from service_* packages into shared/.
"""
