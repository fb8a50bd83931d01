"""
Rate-limit middleware — applies the admission controller to every request.

Limited requests are answered with 429, the standard error envelope and a
Retry-After header. Admitted responses carry X-RateLimit-Limit and
X-RateLimit-Remaining.
"""

from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from relief.admission.limiter import RateLimiter
from relief.core.errors import RateLimitError, build_error_response

logger = logging.getLogger(__name__)

EXEMPT_PREFIXES = ("/health", "/docs", "/redoc", "/openapi", "/favicon")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Gate requests through ``request.app.state.rate_limiter``."""

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if path == "/" or any(path.startswith(p) for p in EXEMPT_PREFIXES):
            return await call_next(request)

        limiter: RateLimiter = request.app.state.rate_limiter
        decision = limiter.check(path, request.headers)

        if decision.limited:
            exc = RateLimitError(
                "Too many requests",
                retry_after=decision.retry_after,
            )
            exc.details["message"] = "Please try again later"
            return build_error_response(
                exc.status_code, exc.error_code, exc.message, exc.details,
                request,
                headers={
                    **exc.headers,
                    "X-RateLimit-Limit": str(decision.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response
