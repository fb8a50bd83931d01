"""
API client — httpx wrapper used by the sync engine.

    • fixed 10 s request timeout (API_TIMEOUT_SECONDS)
    • transport failures mapped to NetworkError / RequestTimeoutError
    • error responses mapped onto the ApiResponseError family
    • GET list requests retried with exponential backoff; auth and
      validation failures are never retried
    • mutations carry an Idempotency-Key header

Usage:
    client = ApiClient("http://localhost:8000/api")
    alerts = await client.list_records("alerts", since="2026-10-19T08:00:00+00:00")
    await client.close()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from relief.core.config import settings
from relief.offline.errors import (
    ApiResponseError,
    NetworkError,
    RateLimitedError,
    RequestTimeoutError,
    ServerError,
    error_from_response,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Retry Policy
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RetryConfig:
    """Retry parameters for idempotent reads."""
    max_attempts: int
    backoff_base_seconds: float
    backoff_type: str = "exponential"  # "exponential" or "linear"


RETRYABLE_ERRORS = (NetworkError, ServerError, RateLimitedError)


def compute_backoff(config: RetryConfig, attempt: int) -> float:
    """
    Delay before the next attempt.

    Parameters
    ----------
    config : RetryConfig
    attempt : int
        Attempt that just failed (1-based).
    """
    if config.backoff_type == "exponential":
        return config.backoff_base_seconds * (2 ** (attempt - 1))
    return config.backoff_base_seconds * attempt


def default_retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=settings.PULL_RETRY_ATTEMPTS,
        backoff_base_seconds=settings.PULL_RETRY_BACKOFF_SECONDS,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Client
# ═══════════════════════════════════════════════════════════════════════════

class ApiClient:
    """
    Thin async client for the alerts / reports / resources API.

    Parameters
    ----------
    base_url : str, optional
        API root including the ``/api`` prefix.
    timeout : float, optional
        Per-request timeout in seconds.
    transport : httpx.AsyncBaseTransport, optional
        Injected transport (ASGI app or mock in tests).
    retry : RetryConfig, optional
        Backoff policy for list reads.
    sleep : callable, optional
        Awaitable sleep used between retries.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[Dict[str, str]] = None,
        retry: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.API_TIMEOUT_SECONDS
        self.retry = retry or default_retry_config()
        self._transport = transport
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._sleep = sleep
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def health_url(self) -> str:
        """Liveness endpoint at the server root, outside the API prefix."""
        return str(httpx.URL(self.base_url).copy_with(path="/health/live"))

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url + "/",
                timeout=self.timeout,
                headers=self._headers,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── Transport ──

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """One HTTP exchange; returns decoded JSON or raises a SyncError."""
        client = await self._get_client()
        try:
            response = await client.request(
                method, path.lstrip("/"), json=json, params=params, headers=headers,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"{method} {path} timed out after {self.timeout:.0f}s") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Unable to connect to server: {e}") from e

        if response.is_error:
            error = error_from_response(response)
            logger.warning(
                "%s %s → %d: %s", method, path, response.status_code, error.message,
                extra={"status_code": response.status_code, "endpoint": path},
            )
            raise error

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _with_retry(self, method: str, path: str, **kwargs: Any) -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.request(method, path, **kwargs)
            except RETRYABLE_ERRORS as e:
                if attempt >= self.retry.max_attempts:
                    raise
                delay = compute_backoff(self.retry, attempt)
                if isinstance(e, RateLimitedError) and e.retry_after:
                    delay = max(delay, float(e.retry_after))
                logger.info(
                    "Retry %d/%d for %s %s in %.1fs (%s)",
                    attempt, self.retry.max_attempts - 1, method, path, delay, e.message,
                )
                await self._sleep(delay)

    # ── Endpoints ──

    async def list_records(self, collection: str, since: Optional[str] = None) -> List[Dict[str, Any]]:
        """GET /{collection}, incremental when ``since`` is given."""
        params = {"since": since} if since else None
        data = await self._with_retry("GET", f"/{collection}", params=params)
        if not isinstance(data, list):
            raise ApiResponseError(
                f"Expected a list from /{collection}", status_code=200,
            )
        return data

    async def create_report(
        self, data: Dict[str, Any], idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return await self.request("POST", "/reports", json=data, headers=headers)

    async def update_resource(
        self, resource_id: str, data: Dict[str, Any], idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return await self.request("PUT", f"/resources/{resource_id}", json=data, headers=headers)

    async def update_alert(
        self, alert_id: str, data: Dict[str, Any], idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return await self.request("PATCH", f"/alerts/{alert_id}", json=data, headers=headers)

    async def delete_report(self, report_id: str, idempotency_key: Optional[str] = None) -> Any:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return await self.request("DELETE", f"/reports/{report_id}", headers=headers)

    async def ping(self) -> bool:
        """True if the server answers its liveness probe at all."""
        client = await self._get_client()
        try:
            response = await client.get(self.health_url, timeout=min(self.timeout, 5.0))
        except httpx.HTTPError as e:
            logger.debug("Liveness probe failed: %s", e)
            return False
        return response.status_code < 500
