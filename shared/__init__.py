"""
Shared utilities for the marketplace session client.

This package aggregates common building blocks consumed by the session
engine:

- config: Client configuration via pydantic-settings
- logging: Structured logging with subject correlation
- metrics: Prometheus counters for session lifecycle events
- errors: Canonical error types and responses

Do not import from service_session into shared/ (test_helpers excepted,
which builds fakes against the service interfaces).
"""
