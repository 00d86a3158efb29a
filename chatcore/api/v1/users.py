from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from chatcore.api.deps import get_identity
from chatcore.core.errors import success_response
from chatcore.core.security import Identity
from chatcore.db.session import get_db
from chatcore.schemas.users import PresenceUpdateRequest, ProfileUpdateRequest, UserPublic
from chatcore.services import user_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me")
def me(db: Session = Depends(get_db), identity: Identity = Depends(get_identity)):
    user = user_service.get_user(db, identity.user_id)
    return success_response(UserPublic.model_validate(user).model_dump(mode="json"))


@router.put("/me")
def update_profile(
    payload: ProfileUpdateRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    logger.info("Profile update endpoint hit user_id=%s", identity.user_id)
    user = user_service.upsert_profile(
        db,
        identity=identity,
        display_name=payload.display_name,
        avatar_url=payload.avatar_url,
    )
    return success_response(UserPublic.model_validate(user).model_dump(mode="json"))


@router.post("/me/presence")
def update_presence(
    payload: PresenceUpdateRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    user = user_service.set_presence(db, identity=identity, status=payload.status)
    return success_response(UserPublic.model_validate(user).model_dump(mode="json"))
