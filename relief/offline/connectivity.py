"""
Connectivity monitor — single source of truth for online/offline state.

Fed either by platform events (``handle_event("online" | "offline")``) or by
its own probe loop pinging the server's liveness endpoint. Every transition
notifies listeners; an offline → online transition also runs
``SyncEngine.on_reconnect``.

Usage:
    monitor = ConnectivityMonitor(probe=client.ping)
    monitor.attach(engine)
    unsubscribe = monitor.add_listener(lambda online: print("online" if online else "offline"))
    await monitor.start()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional

from relief.core.config import settings

if TYPE_CHECKING:
    from relief.offline.sync_engine import ReconnectReport, SyncEngine

logger = logging.getLogger(__name__)

Listener = Callable[[bool], Any]
Probe = Callable[[], Awaitable[bool]]

ONLINE_EVENT = "online"
OFFLINE_EVENT = "offline"


class ConnectivityMonitor:
    """
    Tracks connectivity and triggers reconnect handling.

    Parameters
    ----------
    initial_online : bool
        State assumed before the first event or probe.
    engine : SyncEngine, optional
        Engine whose ``on_reconnect`` runs on every offline → online edge.
    probe : callable, optional
        Async callable returning True when the server is reachable.
    probe_interval : float, optional
        Seconds between probes once ``start()`` is called.
    """

    def __init__(
        self,
        initial_online: bool = True,
        engine: Optional["SyncEngine"] = None,
        probe: Optional[Probe] = None,
        probe_interval: Optional[float] = None,
    ):
        self._online = initial_online
        self._engine = engine
        self._probe = probe
        self.probe_interval = probe_interval or settings.CONNECTIVITY_PROBE_INTERVAL_SECONDS
        self._listeners: List[Listener] = []
        self._running = False
        self._probe_task: Optional[asyncio.Task] = None

    def is_online(self) -> bool:
        return self._online

    def attach(self, engine: "SyncEngine") -> None:
        self._engine = engine

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Subscribe to transitions; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self, online: bool) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(online)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # A broken listener must not block reconnect handling
                logger.exception("Connectivity listener failed")

    async def set_online(self, online: bool) -> Optional["ReconnectReport"]:
        """Record a connectivity state; returns the reconnect report, if any."""
        if online == self._online:
            return None

        self._online = online
        logger.info("Connectivity changed: %s", ONLINE_EVENT if online else OFFLINE_EVENT)
        await self._notify(online)

        if online and self._engine is not None:
            return await self._engine.on_reconnect()
        return None

    async def handle_event(self, event: str) -> Optional["ReconnectReport"]:
        """Platform event hook: ``"online"`` or ``"offline"``."""
        if event not in (ONLINE_EVENT, OFFLINE_EVENT):
            raise ValueError(f"Unknown connectivity event '{event}'")
        return await self.set_online(event == ONLINE_EVENT)

    async def check_now(self) -> bool:
        """Probe the server once and apply the result."""
        if self._probe is None:
            return self._online
        reachable = bool(await self._probe())
        await self.set_online(reachable)
        return reachable

    # ── Lifecycle ──

    async def start(self) -> None:
        """Start the probe loop."""
        if self._running or self._probe is None:
            return
        self._running = True
        self._probe_task = asyncio.create_task(self._run_probe())
        logger.info("Connectivity monitor started (probe every %.0fs)", self.probe_interval)

    async def stop(self) -> None:
        """Stop the probe loop."""
        self._running = False
        if self._probe_task:
            self._probe_task.cancel()
            try:
                await self._probe_task
            except asyncio.CancelledError:
                pass
            self._probe_task = None
        logger.info("Connectivity monitor stopped")

    async def _run_probe(self) -> None:
        while self._running:
            try:
                await self.check_now()
                await asyncio.sleep(self.probe_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("Connectivity probe failed: %s", e)
                await asyncio.sleep(self.probe_interval)
