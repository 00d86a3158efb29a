from __future__ import annotations

from datetime import UTC, datetime
import json

from sqlalchemy.orm import Session

from chatcore.models import Message, RealtimeOutboxEvent
from chatcore.schemas.events import MESSAGES_TABLE

MESSAGE_INSERTED = "message.inserted"


def _serialize_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC).isoformat()
    return value.isoformat()


def enqueue_message_inserted(db: Session, *, message: Message) -> RealtimeOutboxEvent:
    """Queue the insert notification in the caller's transaction.

    The row carries the whole message so subscribers never need to re-fetch it.
    """
    row: dict[str, object] = {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "content": message.content,
        "created_at": _serialize_datetime(message.created_at),
    }
    event = RealtimeOutboxEvent(
        event_type=MESSAGE_INSERTED,
        table_name=MESSAGES_TABLE,
        conversation_id=message.conversation_id,
        row_json=json.dumps(row, separators=(",", ":"), sort_keys=True),
        next_attempt_at=datetime.now(UTC),
    )
    db.add(event)
    return event
