from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass

from chatcore.core.errors import TransientError
from chatcore.schemas.events import MESSAGES_TABLE, MessageInserted

logger = logging.getLogger(__name__)

_CLOSED = object()


@dataclass(frozen=True, slots=True)
class FeedFilter:
    """Which inserts a subscription receives: one table, optionally one conversation."""

    table: str = MESSAGES_TABLE
    conversation_id: str | None = None

    def matches(self, event: MessageInserted) -> bool:
        if event.table != self.table:
            return False
        return self.conversation_id is None or event.conversation_id == self.conversation_id


class FeedSubscription:
    """Async iterator over the events matching one filter.

    Iteration ends after ``unsubscribe()``; if the subscription was dropped by
    the hub (slow consumer, hub shutdown) iteration raises ``TransientError``.
    Events queued but not yet consumed at unsubscribe time are discarded.
    """

    def __init__(self, hub: FeedHub, *, feed_filter: FeedFilter, max_pending: int) -> None:
        self.id = str(uuid.uuid4())
        self.filter = feed_filter
        self._hub = hub
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=max_pending + 1)
        self._max_pending = max_pending
        self._closed = False
        self._error: TransientError | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, event: MessageInserted) -> bool:
        if self._closed:
            return False
        if self._queue.qsize() >= self._max_pending:
            logger.warning("Feed subscriber fell behind subscription_id=%s filter=%s", self.id, self.filter)
            self._fail(TransientError("Realtime feed subscriber fell behind"))
            return False
        self._queue.put_nowait(event)
        return True

    def _fail(self, error: TransientError) -> None:
        self._error = error
        self._close()

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._hub._discard(self.id)
        self._close()
        logger.debug("Feed subscription released subscription_id=%s", self.id)

    def __aiter__(self) -> FeedSubscription:
        return self

    async def __anext__(self) -> MessageInserted:
        if self._closed and self._queue.empty():
            self._finish()
        item = await self._queue.get()
        if item is _CLOSED:
            self._finish()
        return item  # type: ignore[return-value]

    def _finish(self) -> None:
        if self._error is not None:
            raise self._error
        raise StopAsyncIteration


class FeedHub:
    """In-process fan-out of row-insert events to filtered subscriptions."""

    def __init__(self, *, max_pending: int = 200) -> None:
        self._max_pending = max_pending
        self._subscriptions: dict[str, FeedSubscription] = {}
        self._closed = False

    def subscribe(self, feed_filter: FeedFilter) -> FeedSubscription:
        if self._closed:
            raise TransientError("Realtime feed is closed")
        subscription = FeedSubscription(self, feed_filter=feed_filter, max_pending=self._max_pending)
        self._subscriptions[subscription.id] = subscription
        logger.debug(
            "Feed subscription opened subscription_id=%s table=%s conversation_id=%s",
            subscription.id,
            feed_filter.table,
            feed_filter.conversation_id,
        )
        return subscription

    def _discard(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)

    async def publish(self, event: MessageInserted) -> int:
        if self._closed:
            raise TransientError("Realtime feed is closed")
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if not subscription.filter.matches(event):
                continue
            if subscription._offer(event):
                delivered += 1
            else:
                self._discard(subscription.id)
        return delivered

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for subscription in list(self._subscriptions.values()):
            subscription._fail(TransientError("Realtime feed closed"))
        self._subscriptions.clear()
        logger.info("Realtime feed hub closed")

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)
