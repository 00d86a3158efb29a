from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
import logging
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from chatcore.core.clock import utcnow
from chatcore.models import RealtimeOutboxEvent
from chatcore.realtime.publisher import RealtimePublisher

logger = logging.getLogger(__name__)

MAX_BACKOFF_SEC = 30.0


def backoff_delay(attempts: int) -> float:
    return min(MAX_BACKOFF_SEC, 0.5 * (2 ** (attempts - 1)))


def _due_events(db: Session, *, now: datetime, limit: int) -> list[RealtimeOutboxEvent]:
    return list(
        db.scalars(
            select(RealtimeOutboxEvent)
            .where(RealtimeOutboxEvent.published_at.is_(None))
            .where(RealtimeOutboxEvent.next_attempt_at <= now)
            .order_by(RealtimeOutboxEvent.id.asc())
            .limit(limit)
        ).all()
    )


def _conversations_waiting_on_retry(db: Session, *, now: datetime) -> set[str]:
    return set(
        db.scalars(
            select(RealtimeOutboxEvent.conversation_id)
            .where(RealtimeOutboxEvent.published_at.is_(None))
            .where(RealtimeOutboxEvent.next_attempt_at > now)
            .distinct()
        ).all()
    )


class RealtimeDispatcher:
    """Moves committed outbox rows onto the realtime feed, oldest first.

    Rows of one conversation are published in insert order: while a row waits
    for its retry, later rows of the same conversation stay queued behind it.
    """

    def __init__(
        self,
        *,
        publisher: RealtimePublisher,
        session_factory: Callable[[], Session],
        poll_interval_sec: float,
        batch_size: int,
    ) -> None:
        self._publisher = publisher
        self._session_factory = session_factory
        self._poll_interval_sec = poll_interval_sec
        self._batch_size = batch_size
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("Realtime dispatcher started poll_interval_sec=%s batch_size=%s", self._poll_interval_sec, self._batch_size)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Realtime dispatcher stopped")

    async def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                if await self.process_once() == 0:
                    await asyncio.sleep(self._poll_interval_sec)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Realtime dispatcher crashed")
            raise

    async def _attempt(self, event: RealtimeOutboxEvent) -> bool:
        try:
            await self._publisher.publish(event)
        except Exception as exc:
            event.attempts += 1
            delay = backoff_delay(event.attempts)
            event.next_attempt_at = utcnow() + timedelta(seconds=delay)
            event.last_error = str(exc)[:1000]
            logger.warning(
                "Realtime publish failed event_id=%s conversation_id=%s attempts=%s retry_in_sec=%s error=%s",
                event.event_id,
                event.conversation_id,
                event.attempts,
                delay,
                exc,
            )
            return False
        event.published_at = utcnow()
        event.last_error = None
        return True

    async def process_once(self) -> int:
        """Run one pass over due outbox rows; returns how many publish attempts were made."""
        now = utcnow()
        with self._session_factory() as db:
            events = _due_events(db, now=now, limit=self._batch_size)
            if not events:
                return 0

            held_back = _conversations_waiting_on_retry(db, now=now)
            attempted = 0
            for event in events:
                if event.conversation_id in held_back:
                    logger.debug("Realtime event held back event_id=%s conversation_id=%s", event.event_id, event.conversation_id)
                    continue
                attempted += 1
                if not await self._attempt(event):
                    held_back.add(event.conversation_id)

            db.commit()
            return attempted
