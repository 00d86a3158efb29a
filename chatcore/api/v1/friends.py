from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from chatcore.api.deps import get_identity
from chatcore.core.errors import success_response
from chatcore.core.rate_limit import enforce_friend_request_rate_limit
from chatcore.core.security import Identity
from chatcore.db.session import get_db
from chatcore.schemas.friends import FriendEntry, FriendRequestCreate, FriendshipRead
from chatcore.services import friend_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/friends", tags=["friends"])


@router.get("")
def list_friends(db: Session = Depends(get_db), identity: Identity = Depends(get_identity)):
    entries = friend_service.list_accepted(db, identity=identity)
    payload = [FriendEntry.model_validate(entry).model_dump(mode="json") for entry in entries]
    return success_response({"friends": payload})


@router.get("/requests")
def list_pending_requests(db: Session = Depends(get_db), identity: Identity = Depends(get_identity)):
    entries = friend_service.list_pending(db, identity=identity)
    payload = [FriendEntry.model_validate(entry).model_dump(mode="json") for entry in entries]
    return success_response({"requests": payload})


@router.post("/requests")
def send_request(
    payload: FriendRequestCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    logger.info("Friend request endpoint hit user_id=%s", identity.user_id)
    enforce_friend_request_rate_limit(identity)
    friendship = friend_service.send_request(db, identity=identity, target_email=payload.email)
    body = FriendshipRead.model_validate(friendship).model_dump(mode="json")
    return success_response(body, status_code=status.HTTP_201_CREATED)


@router.post("/requests/{request_id}/accept")
def accept_request(
    request_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    logger.info("Friend accept endpoint hit user_id=%s request_id=%s", identity.user_id, request_id)
    friendship = friend_service.accept(db, identity=identity, request_id=request_id)
    return success_response(FriendshipRead.model_validate(friendship).model_dump(mode="json"))


@router.post("/requests/{request_id}/reject")
def reject_request(
    request_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    logger.info("Friend reject endpoint hit user_id=%s request_id=%s", identity.user_id, request_id)
    friend_service.reject(db, identity=identity, request_id=request_id)
    return success_response({"ok": True})
