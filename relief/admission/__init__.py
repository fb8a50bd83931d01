"""
admission — Server-side rate limiting for the platform API.

Sub-modules:
    limiter     — fixed-window counters per (route class, client identity)
    middleware  — Starlette middleware applying the limiter to every request
"""

from .limiter import RateDecision, RateLimiter, RateWindow, client_identity, route_class_for
from .middleware import RateLimitMiddleware

__all__ = [
    "RateDecision",
    "RateLimiter",
    "RateWindow",
    "RateLimitMiddleware",
    "client_identity",
    "route_class_for",
]
