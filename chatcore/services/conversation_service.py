from __future__ import annotations

from datetime import datetime
import logging
from typing import TypedDict

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from chatcore.core.clock import ensure_utc, ensure_utc_or_none, utcnow
from chatcore.core.errors import NotFriendsError
from chatcore.core.ordering import order_key
from chatcore.core.security import Identity, require_identity
from chatcore.models import Conversation, ConversationParticipant, Message, ReadMarker
from chatcore.services import friend_service, membership_service, message_service, user_hydration_service

logger = logging.getLogger(__name__)


class ConversationPayload(TypedDict):
    id: str
    type: str
    created_at: datetime
    last_message_at: datetime | None
    participant_ids: list[str]
    participants: list[dict[str, object]]
    last_message: dict[str, object] | None
    read_at: datetime | None
    unread_count: int


def _participant_ids(db: Session, conversation_ids: list[str]) -> dict[str, list[str]]:
    if not conversation_ids:
        return {}

    rows = db.execute(
        select(ConversationParticipant.conversation_id, ConversationParticipant.user_id)
        .where(ConversationParticipant.conversation_id.in_(conversation_ids))
        .order_by(ConversationParticipant.conversation_id.asc(), ConversationParticipant.user_id.asc())
    ).all()

    result: dict[str, list[str]] = {conversation_id: [] for conversation_id in conversation_ids}
    for conversation_id, user_id in rows:
        result.setdefault(conversation_id, []).append(user_id)
    logger.debug("Loaded conversation participants for %s conversations", len(conversation_ids))
    return result


def _newest_messages(db: Session, conversation_ids: list[str]) -> dict[str, Message]:
    if not conversation_ids:
        return {}

    ranked = (
        select(
            Message.id.label("message_id"),
            func.row_number()
            .over(
                partition_by=Message.conversation_id,
                order_by=(Message.created_at.desc(), Message.id.desc()),
            )
            .label("rank"),
        )
        .where(Message.conversation_id.in_(conversation_ids))
        .subquery()
    )
    rows = db.scalars(
        select(Message).join(ranked, ranked.c.message_id == Message.id).where(ranked.c.rank == 1)
    ).all()
    return {message.conversation_id: message for message in rows}


def _read_markers(db: Session, *, viewer_id: str, conversation_ids: list[str]) -> dict[str, datetime]:
    if not conversation_ids:
        return {}
    rows = db.execute(
        select(ReadMarker.conversation_id, ReadMarker.read_at).where(
            ReadMarker.user_id == viewer_id,
            ReadMarker.conversation_id.in_(conversation_ids),
        )
    ).all()
    return {conversation_id: ensure_utc(read_at) for conversation_id, read_at in rows}


def _unread_counts(db: Session, *, viewer_id: str, conversation_ids: list[str]) -> dict[str, int]:
    if not conversation_ids:
        return {}
    rows = db.execute(
        select(Message.conversation_id, func.count(Message.id))
        .outerjoin(
            ReadMarker,
            and_(ReadMarker.conversation_id == Message.conversation_id, ReadMarker.user_id == viewer_id),
        )
        .where(
            Message.conversation_id.in_(conversation_ids),
            Message.sender_id != viewer_id,
            or_(ReadMarker.read_at.is_(None), Message.created_at > ReadMarker.read_at),
        )
        .group_by(Message.conversation_id)
    ).all()
    return {conversation_id: count for conversation_id, count in rows}


def _build_conversation_payloads(
    db: Session,
    *,
    viewer_id: str,
    conversation_rows: list[Conversation],
) -> list[ConversationPayload]:
    conversation_ids = [conversation.id for conversation in conversation_rows]
    participant_map = _participant_ids(db, conversation_ids)
    newest = _newest_messages(db, conversation_ids)
    markers = _read_markers(db, viewer_id=viewer_id, conversation_ids=conversation_ids)
    unread = _unread_counts(db, viewer_id=viewer_id, conversation_ids=conversation_ids)

    payload: list[ConversationPayload] = []
    for conversation in conversation_rows:
        read_at = markers.get(conversation.id)
        last_message = newest.get(conversation.id)
        payload.append(
            {
                "id": conversation.id,
                "type": conversation.type,
                "created_at": ensure_utc(conversation.created_at),
                "last_message_at": ensure_utc_or_none(conversation.last_message_at),
                "participant_ids": participant_map.get(conversation.id, []),
                "participants": [],
                "last_message": (
                    message_service.serialize_message(last_message, reader_id=viewer_id, read_at=read_at)
                    if last_message is not None
                    else None
                ),
                "read_at": read_at,
                "unread_count": unread.get(conversation.id, 0),
            }
        )

    user_ids = user_hydration_service.collect_user_ids_from_conversations(payload)
    users = user_hydration_service.fetch_users_by_ids(db, user_ids=user_ids)
    users_by_id = {user.id: user_hydration_service.serialize_user_public(user) for user in users}
    user_hydration_service.attach_participants_to_conversations(payload, users_by_id)
    return payload


def _activity_key(payload: ConversationPayload):
    return order_key(payload["last_message_at"] or payload["created_at"], payload["id"])


def bootstrap_conversations(db: Session, *, identity: Identity | None) -> list[ConversationPayload]:
    """Full authoritative snapshot of the caller's conversations, newest activity first."""
    identity = require_identity(identity)
    logger.debug("Bootstrapping conversations for user_id=%s", identity.user_id)
    conversation_rows = db.scalars(
        select(Conversation)
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
        .where(ConversationParticipant.user_id == identity.user_id)
    ).all()
    payload = _build_conversation_payloads(db, viewer_id=identity.user_id, conversation_rows=list(conversation_rows))
    payload.sort(key=_activity_key)
    logger.debug("Found %s conversations for user_id=%s", len(payload), identity.user_id)
    return payload


def get_conversation(db: Session, *, identity: Identity | None, conversation_id: str) -> ConversationPayload:
    identity = require_identity(identity)
    conversation = membership_service.require_participant(db, user_id=identity.user_id, conversation_id=conversation_id)
    return _build_conversation_payloads(db, viewer_id=identity.user_id, conversation_rows=[conversation])[0]


def create_direct(db: Session, *, identity: Identity | None, friend_id: str) -> ConversationPayload:
    """Create a new direct conversation with an accepted friend.

    A pair may own several direct conversations; no lookup for an existing one
    is made.
    """
    identity = require_identity(identity)
    logger.info("Create direct conversation user_id=%s friend_id=%s", identity.user_id, friend_id)
    if not friend_service.are_friends(db, identity.user_id, friend_id):
        logger.warning("Direct conversation refused, not friends user_id=%s friend_id=%s", identity.user_id, friend_id)
        raise NotFriendsError()

    conversation = Conversation(type="direct")
    db.add(conversation)
    db.flush()
    logger.debug("Created new conversation row conversation_id=%s", conversation.id)

    db.add_all(
        [
            ConversationParticipant(conversation_id=conversation.id, user_id=identity.user_id),
            ConversationParticipant(conversation_id=conversation.id, user_id=friend_id),
        ]
    )
    db.commit()
    db.refresh(conversation)
    logger.info("Direct conversation created conversation_id=%s users=%s,%s", conversation.id, identity.user_id, friend_id)
    return _build_conversation_payloads(db, viewer_id=identity.user_id, conversation_rows=[conversation])[0]


def mark_read(
    db: Session,
    *,
    identity: Identity | None,
    conversation_id: str,
    at_time: datetime | None = None,
) -> dict[str, object]:
    identity = require_identity(identity)
    membership_service.require_participant(db, user_id=identity.user_id, conversation_id=conversation_id)
    at_time = ensure_utc(at_time) if at_time is not None else utcnow()

    marker = db.get(ReadMarker, {"conversation_id": conversation_id, "user_id": identity.user_id})
    if marker is None:
        marker = ReadMarker(conversation_id=conversation_id, user_id=identity.user_id, read_at=at_time)
        db.add(marker)
        db.commit()
        logger.info("Read marker created conversation_id=%s user_id=%s", conversation_id, identity.user_id)
    elif ensure_utc(marker.read_at) < at_time:
        marker.read_at = at_time
        db.commit()
        logger.info("Read marker advanced conversation_id=%s user_id=%s", conversation_id, identity.user_id)
    else:
        logger.debug("Read marker not moved back conversation_id=%s user_id=%s", conversation_id, identity.user_id)

    read_at = ensure_utc(marker.read_at)
    unread_count = _unread_counts(db, viewer_id=identity.user_id, conversation_ids=[conversation_id]).get(conversation_id, 0)
    return {"conversation_id": conversation_id, "read_at": read_at, "unread_count": unread_count}
