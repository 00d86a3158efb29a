from __future__ import annotations

from datetime import datetime
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from chatcore.core.clock import ensure_utc, utcnow
from chatcore.core.errors import EmptyContentError
from chatcore.core.security import Identity, require_identity
from chatcore.models import Message, ReadMarker
from chatcore.services import membership_service, realtime_service

logger = logging.getLogger(__name__)


def serialize_message(
    message: Message,
    *,
    reader_id: str | None = None,
    read_at: datetime | None = None,
) -> dict[str, object]:
    created_at = ensure_utc(message.created_at)
    is_read = message.sender_id == reader_id or (read_at is not None and created_at <= read_at)
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "content": message.content,
        "created_at": created_at,
        "is_read": is_read,
    }


def _reader_marker(db: Session, *, conversation_id: str, user_id: str) -> datetime | None:
    marker = db.get(ReadMarker, {"conversation_id": conversation_id, "user_id": user_id})
    return ensure_utc(marker.read_at) if marker is not None else None


def load_messages(db: Session, *, identity: Identity | None, conversation_id: str) -> list[dict[str, object]]:
    """All messages of a conversation, oldest first, with the caller's read flags."""
    identity = require_identity(identity)
    membership_service.require_participant(db, user_id=identity.user_id, conversation_id=conversation_id)
    read_at = _reader_marker(db, conversation_id=conversation_id, user_id=identity.user_id)

    rows = db.scalars(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
    ).all()
    logger.debug("Loaded messages conversation_id=%s count=%s", conversation_id, len(rows))
    return [serialize_message(row, reader_id=identity.user_id, read_at=read_at) for row in rows]


def append_message(
    db: Session,
    *,
    identity: Identity | None,
    conversation_id: str,
    content: str,
) -> dict[str, object]:
    identity = require_identity(identity)
    logger.info("Append message attempt conversation_id=%s sender_id=%s", conversation_id, identity.user_id)
    conversation = membership_service.require_participant(
        db, user_id=identity.user_id, conversation_id=conversation_id
    )
    if not content or not content.strip():
        logger.warning("Blank message refused conversation_id=%s sender_id=%s", conversation_id, identity.user_id)
        raise EmptyContentError()

    now = utcnow()
    message = Message(
        conversation_id=conversation_id,
        sender_id=identity.user_id,
        content=content,
        created_at=now,
    )
    db.add(message)
    db.flush()

    if conversation.last_message_at is None or ensure_utc(conversation.last_message_at) < now:
        conversation.last_message_at = now
    realtime_service.enqueue_message_inserted(db, message=message)

    db.commit()
    db.refresh(message)
    logger.info("Message persisted message_id=%s conversation_id=%s", message.id, conversation_id)
    return serialize_message(message, reader_id=identity.user_id)
