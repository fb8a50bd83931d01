"""
Action queue — durable FIFO of mutations made while the server was unreachable.

Replay contract (``drain``):
    • no-op while offline
    • actions run strictly in enqueue order, one at a time
    • success removes the action
    • failure increments ``retry_count`` and keeps the action in place; one
      failure never stops later actions from being attempted
    • an action that fails with ``retry_count`` already at the ceiling is
      dropped and recorded in ``dropped`` (4 attempts in total by default)
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from relief.core.config import settings
from relief.offline.models import (
    ActionStatus,
    ActionType,
    DrainReport,
    DroppedAction,
    QueuedAction,
    new_idempotency_key,
)
from relief.offline.storage import MemoryStorage, Storage

logger = logging.getLogger(__name__)

Executor = Callable[[QueuedAction], Awaitable[Any]]
DropHandler = Callable[[QueuedAction, Exception], Any]


def _always_online() -> bool:
    return True


class ActionQueue:
    """
    Deferred-mutation log over a ``Storage`` backend.

    The queue shares its backend with the local store so both degrade
    together.
    """

    def __init__(
        self,
        storage: Optional[Storage] = None,
        max_retries: Optional[int] = None,
        is_online: Callable[[], bool] = _always_online,
    ):
        self.storage = storage or MemoryStorage()
        self.max_retries = settings.SYNC_MAX_RETRIES if max_retries is None else max_retries
        self._is_online = is_online
        self.dropped: List[DroppedAction] = []

    async def enqueue(
        self,
        action: ActionType,
        data: Dict[str, Any],
        record_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> QueuedAction:
        """Append a mutation; returns it with its assigned id."""
        queued = await self.storage.add_action(QueuedAction(
            action=ActionType(action),
            data=dict(data),
            record_id=record_id,
            idempotency_key=idempotency_key or new_idempotency_key(),
        ))
        logger.info(
            "Queued %s (action %s) for later sync", queued.action.value, queued.id,
            extra={"action": queued.action.value, "action_id": queued.id},
        )
        return queued

    async def list(self) -> List[QueuedAction]:
        """Pending actions in replay order."""
        return await self.storage.list_actions()

    async def size(self) -> int:
        return len(await self.storage.list_actions())

    async def clear(self) -> int:
        return await self.storage.clear_actions()

    async def drain(self, executor: Executor, on_drop: Optional[DropHandler] = None) -> DrainReport:
        """Replay every queued action through ``executor``."""
        report = DrainReport()
        if not self._is_online():
            logger.debug("Offline; skipping queue drain")
            report.skipped = True
            return report

        actions = await self.list()
        if actions:
            logger.info("Draining %d queued action(s)", len(actions))

        for action in actions:
            if not self._is_online():
                # Connectivity lost mid-drain; the rest wait for the next cycle
                logger.info("Connectivity lost, pausing drain")
                break
            report.processed.append(action.id)
            try:
                await executor(action)
            except Exception as e:
                await self._record_failure(action, e, report, on_drop)
                continue
            await self.storage.delete_action(action.id)
            report.succeeded.append(action.id)
            logger.info(
                "Synced %s (action %d)", action.action.value, action.id,
                extra={"action": action.action.value, "action_id": action.id},
            )

        return report

    async def _record_failure(
        self,
        action: QueuedAction,
        error: Exception,
        report: DrainReport,
        on_drop: Optional[DropHandler],
    ) -> None:
        message = str(error) or type(error).__name__
        extra = {
            "action": action.action.value,
            "action_id": action.id,
            "retry_count": action.retry_count,
        }

        if action.retry_count >= self.max_retries:
            await self.storage.delete_action(action.id)
            self.dropped.append(DroppedAction(action=action, error=message))
            report.dropped.append(action.id)
            logger.error(
                "Dropping %s (action %d) after %d retries: %s",
                action.action.value, action.id, action.retry_count, message,
                extra=extra,
            )
            if on_drop is not None:
                result = on_drop(action, error)
                if inspect.isawaitable(result):
                    await result
            return

        action.retry_count += 1
        action.status = ActionStatus.FAILED
        action.last_error = message
        await self.storage.update_action(action)
        report.failed.append(action.id)
        logger.warning(
            "Replay of %s (action %d) failed, attempt %d: %s",
            action.action.value, action.id, action.retry_count, message,
            extra={**extra, "retry_count": action.retry_count},
        )
