"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON logging
    errors          — exception hierarchy & handlers
    middleware      — request logging and correlation IDs
    health          — health check aggregation
    database        — async SQLite schema for the client-side local store
"""
