"""
Shared utilities for the DuckBuck API Gateway.

Common building blocks consumed by the gateway service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry tracing setup
- errors: Canonical error types and responses
- circuit_breaker: Protection for calls to third-party platforms
- base_service: FastAPI application scaffolding

Do not import from service_* packages into shared/.
"""
