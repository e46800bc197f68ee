"""
Access Service package for the Integration Hub.

The service guards every sync action, enforcing:
- Credential confidentiality: AES-256-GCM sealed tokens via the vault
- Authentication: session token -> Principal via the resolver
- Rate limiting: fixed window per principal
- Plan quotas: integration and monthly sync ceilings per plan tier

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.crypto: Credential cipher, key loading, token helpers.
- app.vault: Sealing/opening of connector credentials.
- app.auth: Principal models and resolver.
- app.quota: Plan limits and quota policy engine.
- app.ratelimit: Fixed-window limiter.
- app.domain: Authorization middleware.
- app.adapters: Session store and repository implementations.
"""
