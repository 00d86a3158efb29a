from __future__ import annotations

from enum import Enum
import logging
from typing import Iterable

from chatcore.realtime.feed import FeedSubscription
from chatcore.schemas.events import MessageInserted
from chatcore.schemas.messages import MessageRead
from chatcore.sync.conversation_index import ConversationIndex

logger = logging.getLogger(__name__)


class MergeOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    DROPPED_UNKNOWN = "dropped_unknown"


class RealtimeMergeEngine:
    """Folds message inserts into a ConversationIndex, one event at a time.

    Events for conversations missing from the index are dropped; the next
    bootstrap picks those conversations up. Re-delivered messages (including
    the echo of the viewer's own optimistic send) are no-ops.
    """

    def __init__(self, index: ConversationIndex, *, viewer_id: str | None) -> None:
        self.index = index
        self.viewer_id = viewer_id

    def apply(self, event: MessageInserted) -> MergeOutcome:
        return self.apply_message(event.message)

    def apply_message(self, message: MessageRead) -> MergeOutcome:
        view = self.index.get(message.conversation_id)
        if view is None:
            logger.debug(
                "Merge dropped event for unknown conversation conversation_id=%s message_id=%s",
                message.conversation_id,
                message.id,
            )
            return MergeOutcome.DROPPED_UNKNOWN

        if view.covers(message):
            logger.debug("Merge skipped duplicate message_id=%s conversation_id=%s", message.id, view.id)
            return MergeOutcome.DUPLICATE

        count_unread = message.sender_id != self.viewer_id and (
            view.read_at is None or message.created_at > view.read_at
        )
        self.index.record_message(view.id, message, count_unread=count_unread)
        logger.debug(
            "Merge applied message_id=%s conversation_id=%s unread=%s position=%s",
            message.id,
            view.id,
            view.unread_count,
            self.index.position(view.id),
        )
        return MergeOutcome.APPLIED

    def apply_all(self, events: Iterable[MessageInserted]) -> list[MergeOutcome]:
        return [self.apply(event) for event in events]

    async def consume(self, subscription: FeedSubscription) -> int:
        """Apply events from a subscription until it is released; returns how many were applied."""
        applied = 0
        async for event in subscription:
            if subscription.closed:
                break
            if self.apply(event) is MergeOutcome.APPLIED:
                applied += 1
        return applied
