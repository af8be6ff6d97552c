"""
Content Service package for the Content Aggregation Gateway.

The service fronts the CMS and booking upstreams with:
- Client-credentials token management for the CMS
- Retries with jittered backoff and typed upstream errors
- An in-memory read-through cache with single-flight misses
- Batched, concurrent id resolution and coordinate enrichment

Structure:
- app.main: FastAPI app, routes and wiring.
- app.adapters: resilient transport and upstream HTTP clients.
- app.auth: CMS token manager.
- app.caching: read-through cache and cache keys.
- app.content: query engine, batch resolver, enrichment, franchises.
- app.domain: request models.
"""
