"""
limiter.py — Fixed-window admission control for all inbound API traffic.

═══════════════════════════════════════════════════════════════════════════
WINDOW MODEL
═══════════════════════════════════════════════════════════════════════════

One window per key ``routeClass:clientIdentity``:

    Route class    Path prefix        Ceiling per window
    ───────────    ───────────        ──────────────────
    auth           /api/auth          20
    reports        /api/reports       50
    alerts         /api/alerts        100
    default        everything else    200

    window = RATE_LIMIT_WINDOW_MS (900 000 ms = 15 min)

Every request increments its window. A window whose age exceeds the window
length is reset on the next request, so the first request of a fresh window
is always admitted. A request is limited when the count exceeds the ceiling.

Client identity is the first address in X-Forwarded-For, then X-Real-IP,
falling back to "unknown".

A fixed window admits bursts at window boundaries (up to 2× the ceiling
across the edge). That trade-off is accepted for simplicity.

Windows live in process memory only and are lost on restart. A background
sweep evicts expired windows so the map stays bounded.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from starlette.requests import Request

from relief.core.config import settings

logger = logging.getLogger(__name__)

ROUTE_CLASSES = ("auth", "reports", "alerts")
DEFAULT_ROUTE_CLASS = "default"
UNKNOWN_CLIENT = "unknown"


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class RateWindow:
    """Request counter for one key within the current window."""
    start: float  # ms, same clock as the limiter
    count: int = 0

    def is_expired(self, now: float, window_ms: float) -> bool:
        return now - self.start > window_ms


@dataclass(frozen=True)
class RateDecision:
    """Outcome of one admission check."""
    limited: bool
    key: str
    route_class: str
    limit: int
    remaining: int
    retry_after: int  # seconds until the window resets
    reset_at: float   # ms on the limiter clock

    def to_dict(self) -> Dict[str, Any]:
        return {
            "limited": self.limited,
            "key": self.key,
            "route_class": self.route_class,
            "limit": self.limit,
            "remaining": self.remaining,
            "retry_after": self.retry_after,
        }


def route_class_for(path: str) -> str:
    """Map a URL path to its route class."""
    if path.startswith("/api/"):
        path = path[len("/api"):]
    for name in ROUTE_CLASSES:
        if path.startswith(f"/{name}"):
            return name
    return DEFAULT_ROUTE_CLASS


def client_identity(headers: Mapping[str, str]) -> str:
    """Extract the client address from proxy headers."""
    lowered = {k.lower(): v for k, v in headers.items()}
    forwarded = lowered.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = lowered.get("x-real-ip", "").strip()
    return real_ip or UNKNOWN_CLIENT


class RateLimiter:
    """
    Per-(route class, client) fixed-window counter.

    Constructed once per server process and handed to the middleware through
    ``app.state``. ``start()`` launches the periodic sweep; ``shutdown()``
    stops it.

    Parameters
    ----------
    window_ms : float, optional
        Window length in milliseconds.
    limits : dict, optional
        Ceiling per route class; must contain ``"default"``.
    sweep_interval : float, optional
        Seconds between sweeps of expired windows.
    clock : callable, optional
        Returns the current time in milliseconds (monotonic).
    """

    def __init__(
        self,
        window_ms: Optional[float] = None,
        limits: Optional[Dict[str, int]] = None,
        sweep_interval: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.window_ms = float(window_ms or settings.RATE_LIMIT_WINDOW_MS)
        self.limits = dict(limits or settings.rate_limits)
        self.limits.setdefault(DEFAULT_ROUTE_CLASS, settings.RATE_LIMIT_DEFAULT)
        self.sweep_interval = sweep_interval or settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS
        self._clock = clock or _monotonic_ms
        self._windows: Dict[str, RateWindow] = {}
        self._sweep_task: Optional[asyncio.Task] = None
        self._running = False

    # ── Keys ──

    def key_for(self, path: str, headers: Mapping[str, str]) -> str:
        return f"{route_class_for(path)}:{client_identity(headers)}"

    def limit_for(self, route_class: str) -> int:
        return self.limits.get(route_class, self.limits[DEFAULT_ROUTE_CLASS])

    def _retry_after(self, window: RateWindow, now: float) -> int:
        remaining_ms = window.start + self.window_ms - now
        return max(1, math.ceil(remaining_ms / 1000.0))

    # ── Admission ──

    def check(self, path: str, headers: Mapping[str, str]) -> RateDecision:
        """Count one request and decide whether it is admitted."""
        route_class = route_class_for(path)
        key = f"{route_class}:{client_identity(headers)}"
        limit = self.limit_for(route_class)
        now = self._clock()

        window = self._windows.get(key)
        if window is None or window.is_expired(now, self.window_ms):
            window = RateWindow(start=now)
            self._windows[key] = window

        window.count += 1
        limited = window.count > limit

        if limited:
            logger.warning(
                "Rate limit exceeded for %s (%d/%d)",
                key, window.count, limit,
                extra={"route_class": route_class, "client_key": key},
            )

        return RateDecision(
            limited=limited,
            key=key,
            route_class=route_class,
            limit=limit,
            remaining=max(0, limit - window.count),
            retry_after=self._retry_after(window, now),
            reset_at=window.start + self.window_ms,
        )

    async def is_limited(self, request: Request) -> bool:
        """True iff this request exceeds its window ceiling."""
        return self.check(request.url.path, request.headers).limited

    def info(self, path: str, headers: Mapping[str, str]) -> Dict[str, Any]:
        """Remaining quota for a caller, without counting a request."""
        route_class = route_class_for(path)
        key = f"{route_class}:{client_identity(headers)}"
        limit = self.limit_for(route_class)
        now = self._clock()
        window = self._windows.get(key)

        if window is None or window.is_expired(now, self.window_ms):
            return {"limit": limit, "remaining": limit, "reset": now + self.window_ms}

        return {
            "limit": limit,
            "remaining": max(0, limit - window.count),
            "reset": window.start + self.window_ms,
        }

    # ── Housekeeping ──

    def sweep(self) -> int:
        """Evict expired windows. Returns the number removed."""
        now = self._clock()
        stale = [
            key for key, window in self._windows.items()
            if window.is_expired(now, self.window_ms)
        ]
        for key in stale:
            del self._windows[key]
        if stale:
            logger.debug("Swept %d expired rate windows", len(stale))
        return len(stale)

    @property
    def active_windows(self) -> int:
        return len(self._windows)

    @property
    def running(self) -> bool:
        return self._running

    # ── Lifecycle ──

    async def start(self) -> None:
        """Start the periodic sweep task."""
        if self._running:
            return
        self._running = True
        self._sweep_task = asyncio.create_task(self._run_sweeper())
        logger.info(
            "Rate limiter started (window=%.0fs, sweep every %.0fs)",
            self.window_ms / 1000, self.sweep_interval,
        )

    async def shutdown(self) -> None:
        """Stop the sweep task."""
        self._running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        logger.info("Rate limiter stopped")

    async def _run_sweeper(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.sweep_interval)
                self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("Rate window sweep failed: %s", e)
