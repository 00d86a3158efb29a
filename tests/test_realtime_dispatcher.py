from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
import json

import pytest
from sqlalchemy import select

from chatcore.models import Conversation, RealtimeOutboxEvent, User
from chatcore.realtime.dispatcher import RealtimeDispatcher, backoff_delay
from chatcore.schemas.events import MESSAGES_TABLE


class _FakePublisher:
    def __init__(self, *, failures: int = 0) -> None:
        self._remaining_failures = failures
        self.published_event_ids: list[str] = []

    async def publish(self, event: RealtimeOutboxEvent) -> int:
        if self._remaining_failures > 0:
            self._remaining_failures -= 1
            raise RuntimeError("simulated publish failure")
        self.published_event_ids.append(event.event_id)
        return 1


def _create_conversation(session_factory) -> str:
    with session_factory() as db:
        if db.get(User, "alice") is None:
            db.add(User(id="alice", email="alice@example.com"))
        conversation = Conversation(type="direct")
        db.add(conversation)
        db.commit()
        return conversation.id


def _create_event(conversation_id: str, message_id: str = "msg-1") -> RealtimeOutboxEvent:
    row = {
        "id": message_id,
        "conversation_id": conversation_id,
        "sender_id": "alice",
        "content": "hello",
        "created_at": datetime.now(UTC).isoformat(),
    }
    return RealtimeOutboxEvent(
        event_type="message.inserted",
        table_name=MESSAGES_TABLE,
        conversation_id=conversation_id,
        row_json=json.dumps(row),
        next_attempt_at=datetime.now(UTC),
    )


def _dispatcher(publisher: _FakePublisher, session_factory) -> RealtimeDispatcher:
    return RealtimeDispatcher(
        publisher=publisher,
        session_factory=session_factory,
        poll_interval_sec=0.01,
        batch_size=50,
    )


def test_dispatcher_marks_events_as_published(database):
    session_factory = database
    conversation_id = _create_conversation(session_factory)

    with session_factory() as db:
        db.add(_create_event(conversation_id))
        db.commit()

    publisher = _FakePublisher()
    processed = asyncio.run(_dispatcher(publisher, session_factory).process_once())
    assert processed == 1

    with session_factory() as db:
        event = db.scalar(select(RealtimeOutboxEvent))
        assert event is not None
        assert event.published_at is not None
        assert event.attempts == 0
        assert event.event_id in publisher.published_event_ids

    # Nothing left to do on the next pass.
    assert asyncio.run(_dispatcher(publisher, session_factory).process_once()) == 0


def test_dispatcher_retries_after_publish_failure(database):
    session_factory = database
    conversation_id = _create_conversation(session_factory)

    with session_factory() as db:
        db.add(_create_event(conversation_id))
        db.commit()

    publisher = _FakePublisher(failures=1)
    dispatcher = _dispatcher(publisher, session_factory)
    first_processed = asyncio.run(dispatcher.process_once())
    assert first_processed == 1

    with session_factory() as db:
        event = db.scalar(select(RealtimeOutboxEvent))
        assert event is not None
        assert event.published_at is None
        assert event.attempts == 1
        assert event.last_error == "simulated publish failure"
        now = datetime.now(UTC)
        if event.next_attempt_at.tzinfo is None:
            now = now.replace(tzinfo=None)
        assert event.next_attempt_at > now
        event.next_attempt_at = now - timedelta(seconds=1)
        db.commit()

    second_processed = asyncio.run(dispatcher.process_once())
    assert second_processed == 1

    with session_factory() as db:
        event = db.scalar(select(RealtimeOutboxEvent))
        assert event is not None
        assert event.published_at is not None
        assert event.attempts == 1
        assert event.last_error is None
        assert event.event_id in publisher.published_event_ids


def test_failed_event_holds_back_its_conversation_only(database):
    session_factory = database
    blocked_id = _create_conversation(session_factory)
    other_id = _create_conversation(session_factory)

    with session_factory() as db:
        first = _create_event(blocked_id, "msg-1")
        db.add(first)
        db.flush()
        second = _create_event(blocked_id, "msg-2")
        db.add(second)
        db.flush()
        unrelated = _create_event(other_id, "msg-3")
        db.add(unrelated)
        db.commit()
        second_event_id = second.event_id
        unrelated_event_id = unrelated.event_id

    publisher = _FakePublisher(failures=1)
    dispatcher = _dispatcher(publisher, session_factory)
    asyncio.run(dispatcher.process_once())

    assert publisher.published_event_ids == [unrelated_event_id]

    # The later insert of the failed conversation stays queued while the retry is pending.
    asyncio.run(dispatcher.process_once())
    assert second_event_id not in publisher.published_event_ids


@pytest.mark.parametrize(
    ("attempts", "expected"),
    [(1, 0.5), (2, 1.0), (3, 2.0), (7, 30.0), (50, 30.0)],
)
def test_backoff_delay_doubles_and_caps(attempts, expected):
    assert backoff_delay(attempts) == expected
