"""
Conflict resolution — reconcile a locally held record with the server copy.

Strategies:
    serverWins  server record replaces the local one
    localWins   local record is kept untouched
    merge       field-level union, local fields win; metadata records the merge
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Union

from relief.offline.errors import ConflictResolutionConfigError
from relief.offline.models import METADATA_KEY, ConflictStrategy, to_iso, utc_now


def parse_strategy(value: Union[str, ConflictStrategy]) -> ConflictStrategy:
    """Strategy from its wire name; unknown names raise a config error."""
    if isinstance(value, ConflictStrategy):
        return value
    try:
        return ConflictStrategy(value)
    except ValueError:
        valid = [s.value for s in ConflictStrategy]
        raise ConflictResolutionConfigError(
            f"Unknown conflict resolution strategy {value!r}. Must be one of: {valid}"
        ) from None


def resolve(
    local: Dict[str, Any],
    server: Dict[str, Any],
    strategy: Union[str, ConflictStrategy] = ConflictStrategy.SERVER_WINS,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Pure function: neither input is mutated.

    >>> resolve({"a": 1}, {"a": 2, "b": 3}, "merge")["a"]
    1
    """
    strategy = parse_strategy(strategy)

    if strategy is ConflictStrategy.SERVER_WINS:
        return dict(server)

    if strategy is ConflictStrategy.LOCAL_WINS:
        return dict(local)

    if strategy is ConflictStrategy.MERGE:
        merged = {**server, **local}
        merged[METADATA_KEY] = {
            **(server.get(METADATA_KEY) or {}),
            **(local.get(METADATA_KEY) or {}),
            "merged": True,
            "mergedAt": to_iso(now or utc_now()),
        }
        return merged

    raise ConflictResolutionConfigError(f"No resolution rule for strategy {strategy.value!r}")
