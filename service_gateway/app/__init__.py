"""
API Gateway Service package for the DuckBuck API.

The gateway fronts client requests, enforcing:
- Authentication: bearer ID tokens verified against the identity provider,
  with a local verdict cache and revocation set; API keys for operator routes
- Abuse protection: request screening and per-address failure tracking
  with time-bound blocks

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.auth: Token verification, verdict cache, revocation, API keys.
- app.security: Abuse tracker, request screening, client address extraction.
- app.domain: Request middleware and background maintenance.

All security state is process-local: every gateway instance behind the load
balancer keeps its own cache, revocations and blocks.
"""
