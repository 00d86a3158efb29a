from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from chatcore.api.deps import get_identity
from chatcore.core.errors import success_response
from chatcore.core.security import Identity
from chatcore.db.session import get_db
from chatcore.models import User
from chatcore.schemas.sync import BootstrapResponse
from chatcore.services import conversation_service, user_hydration_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/bootstrap")
def bootstrap(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    logger.info("Sync bootstrap requested user_id=%s", identity.user_id)
    conversations = conversation_service.bootstrap_conversations(db, identity=identity)
    # A token holder without a stored profile still gets a snapshot.
    user = db.get(User, identity.user_id)
    me = user_hydration_service.serialize_user_public(user) if user is not None else None

    payload = BootstrapResponse.model_validate({"me": me, "conversations": conversations}).model_dump(mode="json")
    logger.debug(
        "Sync bootstrap payload user_id=%s conversations=%s",
        identity.user_id,
        len(payload["conversations"]),
    )
    return success_response(payload)
