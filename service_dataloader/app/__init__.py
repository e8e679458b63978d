"""
Data loader service package for the sentiment dashboard.

Every feature service (politician records, demographic, geographic,
temporal and topic data) loads through one engine that provides:
- Single-flight: concurrent requests for a key share one producer call
- Caching: successful results kept until evicted or their TTL elapses
- Retries with backoff and per-attempt timeouts
- Loading state and progress for UI polling, plus lifecycle events

Structure:
- app.engine: the loader engine, its state model and events.
- app.services: consumer-side helpers built on the engine.
"""
