from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from chatcore.api.deps import get_identity
from chatcore.core.errors import success_response
from chatcore.core.security import Identity
from chatcore.db.session import get_db
from chatcore.schemas.conversations import ConversationSnapshot, DirectConversationCreateRequest
from chatcore.schemas.messages import MarkReadRequest, ReadState
from chatcore.services import conversation_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("")
def list_conversations(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    logger.info("List conversations endpoint hit user_id=%s", identity.user_id)
    conversations = conversation_service.bootstrap_conversations(db, identity=identity)
    payload = [ConversationSnapshot.model_validate(item).model_dump(mode="json") for item in conversations]
    return success_response(payload)


@router.get("/{conversation_id}")
def get_conversation(
    conversation_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    conversation = conversation_service.get_conversation(db, identity=identity, conversation_id=conversation_id)
    return success_response(ConversationSnapshot.model_validate(conversation).model_dump(mode="json"))


@router.post("/direct")
def create_direct(
    payload: DirectConversationCreateRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    logger.info(
        "Create direct conversation endpoint hit user_id=%s friend_id=%s",
        identity.user_id,
        payload.friend_id,
    )
    conversation = conversation_service.create_direct(db, identity=identity, friend_id=payload.friend_id)
    body = ConversationSnapshot.model_validate(conversation).model_dump(mode="json")
    return success_response(body, status_code=status.HTTP_201_CREATED)


@router.post("/{conversation_id}/read")
def mark_read(
    conversation_id: str,
    payload: MarkReadRequest | None = None,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    at_time = payload.at_time if payload is not None else None
    state = conversation_service.mark_read(db, identity=identity, conversation_id=conversation_id, at_time=at_time)
    return success_response(ReadState.model_validate(state).model_dump(mode="json"))
