from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from chatcore.core.clock import ensure_utc

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_MICROSECOND = timedelta(microseconds=1)


@dataclass(frozen=True, slots=True, order=True)
class OrderKey:
    """Sort key for conversation lists: most recent activity first, then id ascending."""

    newest_first: int
    conversation_id: str


def order_key(activity_at: datetime, conversation_id: str) -> OrderKey:
    micros = (ensure_utc(activity_at) - _EPOCH) // _MICROSECOND
    return OrderKey(newest_first=-micros, conversation_id=conversation_id)
