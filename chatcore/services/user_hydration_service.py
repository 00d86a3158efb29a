from __future__ import annotations

import logging
from typing import Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from chatcore.core.clock import ensure_utc_or_none
from chatcore.models import User

logger = logging.getLogger(__name__)


def collect_user_ids_from_conversations(conversations: Iterable[Mapping[str, object]]) -> set[str]:
    user_ids: set[str] = set()
    for conversation in conversations:
        participant_ids = conversation.get("participant_ids")
        if not isinstance(participant_ids, list):
            continue
        for participant_id in participant_ids:
            if isinstance(participant_id, str) and participant_id:
                user_ids.add(participant_id)
    return user_ids


def fetch_users_by_ids(db: Session, *, user_ids: Iterable[str]) -> list[User]:
    normalized_ids = [user_id.strip() for user_id in user_ids if isinstance(user_id, str) and user_id.strip()]
    if not normalized_ids:
        return []

    deduped_ids = list(dict.fromkeys(normalized_ids))
    rows = db.scalars(select(User).where(User.id.in_(deduped_ids)).order_by(User.email.asc(), User.id.asc())).all()
    logger.debug("Fetched hydrated users requested=%s returned=%s", len(deduped_ids), len(rows))
    return list(rows)


def serialize_user_public(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "avatar_url": user.avatar_url,
        "status": user.status,
        "last_seen_at": ensure_utc_or_none(user.last_seen_at),
    }


def attach_participants_to_conversations(
    conversations: list[dict[str, object]],
    users_by_id: Mapping[str, dict[str, object]],
) -> list[dict[str, object]]:
    for conversation in conversations:
        participant_ids = conversation.get("participant_ids")
        if not isinstance(participant_ids, list):
            conversation["participants"] = []
            continue
        conversation["participants"] = [users_by_id[user_id] for user_id in participant_ids if user_id in users_by_id]
    return conversations
