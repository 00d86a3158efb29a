from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from chatcore.core.errors import NotAuthorizedError, NotFoundError
from chatcore.models import Conversation, ConversationParticipant

logger = logging.getLogger(__name__)


def require_participant(db: Session, *, user_id: str, conversation_id: str) -> Conversation:
    logger.debug("Checking participant user_id=%s conversation_id=%s", user_id, conversation_id)
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        logger.warning("Conversation not found conversation_id=%s", conversation_id)
        raise NotFoundError("Conversation not found")
    participant = db.get(ConversationParticipant, {"conversation_id": conversation_id, "user_id": user_id})
    if participant is None:
        logger.warning("Participant check failed user_id=%s conversation_id=%s", user_id, conversation_id)
        raise NotAuthorizedError()
    return conversation


def participant_conversation_ids(db: Session, *, user_id: str, conversation_ids: list[str]) -> set[str]:
    if not conversation_ids:
        return set()
    return set(
        db.scalars(
            select(ConversationParticipant.conversation_id).where(
                ConversationParticipant.user_id == user_id,
                ConversationParticipant.conversation_id.in_(conversation_ids),
            )
        ).all()
    )
