"""
Shared utilities for the identity and session access layer.

This package aggregates common building blocks consumed by both services:

- config: Settings via pydantic-settings (ACCESS_* environment variables)
- logging: Structured logging with trace and correlation context
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorator for transport adapters
- circuit_breaker: Protection for identity provider calls

Runtime modules here never import from service_* packages; test_helpers
is the only module that builds service models.
"""
