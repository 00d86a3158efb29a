from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from chatcore.api.deps import get_identity
from chatcore.core.errors import success_response
from chatcore.core.security import Identity
from chatcore.db.session import get_db
from chatcore.schemas.messages import MessageRead, SendMessageRequest
from chatcore.services import message_service

router = APIRouter(prefix="/conversations/{conversation_id}/messages", tags=["messages"])


@router.get("")
def list_messages(
    conversation_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    messages = message_service.load_messages(db, identity=identity, conversation_id=conversation_id)
    payload = [MessageRead.model_validate(message).model_dump(mode="json") for message in messages]
    return success_response({"messages": payload})


@router.post("")
def send_message(
    conversation_id: str,
    payload: SendMessageRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    message = message_service.append_message(
        db,
        identity=identity,
        conversation_id=conversation_id,
        content=payload.content,
    )
    response = MessageRead.model_validate(message).model_dump(mode="json")
    return success_response(response, status_code=status.HTTP_201_CREATED)
