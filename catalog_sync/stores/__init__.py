"""Data stores for persistence and caching.

Stores handle:
- PostgreSQL: DB session, engine lifecycle, schema bootstrap
- Redis: shared priority-table cache with TTL

No sync/merge logic in stores - that belongs in services.
"""
