"""
Request middleware — correlation ids, timing and one log line per request.

    X-Request-ID     echoed from the client or generated
    X-Process-Time   handler duration

Sync clients probe ``/health/live`` every few seconds, so probes are logged
at DEBUG. Mutations are tagged with a prefix of their Idempotency-Key.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from relief.admission.limiter import UNKNOWN_CLIENT, client_identity, route_class_for
from relief.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

QUIET_PREFIXES = ("/health", "/docs", "/redoc", "/openapi", "/favicon")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Attach request context for log enrichment and log the outcome."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        client = client_identity(request.headers)
        if client == UNKNOWN_CLIENT and request.client:
            client = request.client.host
        path = request.url.path
        route_class = route_class_for(path)
        idempotency_key = request.headers.get("Idempotency-Key")

        context = {
            "request_id": request_id,
            "client_ip": client,
            "endpoint": path,
            "method": request.method,
            "route_class": route_class,
        }
        if idempotency_key:
            context["idempotency_key"] = idempotency_key
        set_request_context(**context)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                "%s %s → 500 (%.1fms) [%s]", request.method, path, duration_ms, client,
                extra={"duration_ms": duration_ms, "status_code": 500, "route_class": route_class},
            )
            set_request_context()
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if response.status_code >= 400:
            level = logging.WARNING
        elif path.startswith(QUIET_PREFIXES):
            level = logging.DEBUG
        else:
            level = logging.INFO
        logger.log(
            level,
            "%s %s → %d (%.1fms) [%s]%s",
            request.method, path, response.status_code, duration_ms, client,
            f" key={idempotency_key[:8]}" if idempotency_key else "",
            extra={
                "duration_ms": duration_ms,
                "status_code": response.status_code,
                "endpoint": path,
                "route_class": route_class,
            },
        )

        set_request_context()
        return response
