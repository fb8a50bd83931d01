"""
relief — Offline-first sync core for a disaster-response platform.

Packages:
    core       — config, logging, errors, middleware, health, local database
    admission  — server-side rate limiting
    api        — REST surface (alerts, reports, resources)
    offline    — client-side local store, action queue, sync engine
"""

__version__ = "1.0.0"
