"""
Shared utilities for the sentiment data loader.

This package aggregates common building blocks consumed by the loader
engine and the services built on it:

- config: Loader configuration via pydantic-settings
- logging: Structured logging with load-key correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Backoff calculation and the async retry executor

Do not import from service_* packages into shared/.
"""
