from __future__ import annotations

import logging

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatcore.core.errors import DuplicateRequestError, NotFoundError, SelfReferenceError
from chatcore.core.security import Identity, require_identity
from chatcore.models import Friendship
from chatcore.models.friendship import FRIENDSHIP_ACCEPTED, FRIENDSHIP_PENDING, pair_key
from chatcore.services import user_hydration_service, user_service

logger = logging.getLogger(__name__)


def _existing_for_pair(db: Session, user_id: str, other_user_id: str) -> Friendship | None:
    return db.scalar(
        select(Friendship).where(
            or_(
                and_(Friendship.requester_id == user_id, Friendship.recipient_id == other_user_id),
                and_(Friendship.requester_id == other_user_id, Friendship.recipient_id == user_id),
            )
        )
    )


def _request_for_recipient(db: Session, *, request_id: str, recipient_id: str) -> Friendship:
    request = db.scalar(
        select(Friendship).where(Friendship.id == request_id, Friendship.recipient_id == recipient_id)
    )
    if request is None:
        logger.warning("Friend request not found request_id=%s recipient_id=%s", request_id, recipient_id)
        raise NotFoundError("Friend request not found")
    return request


def send_request(db: Session, *, identity: Identity | None, target_email: str) -> Friendship:
    identity = require_identity(identity)
    logger.info("Friend request attempt requester_id=%s", identity.user_id)

    target = user_service.find_user_by_email(db, target_email)
    if target is None:
        logger.warning("Friend request target not found requester_id=%s", identity.user_id)
        raise NotFoundError("User not found")
    if target.id == identity.user_id:
        logger.warning("Friend request to self requester_id=%s", identity.user_id)
        raise SelfReferenceError()

    existing = _existing_for_pair(db, identity.user_id, target.id)
    if existing is not None:
        logger.warning(
            "Friend request duplicate requester_id=%s recipient_id=%s existing_id=%s status=%s",
            identity.user_id,
            target.id,
            existing.id,
            existing.status,
        )
        raise DuplicateRequestError()

    friendship = Friendship(
        requester_id=identity.user_id,
        recipient_id=target.id,
        pair_key=pair_key(identity.user_id, target.id),
        status=FRIENDSHIP_PENDING,
    )
    db.add(friendship)
    try:
        db.commit()
    except IntegrityError as exc:
        # A concurrent request for the same pair won the unique constraint.
        db.rollback()
        logger.warning("Friend request lost pair race requester_id=%s recipient_id=%s", identity.user_id, target.id)
        raise DuplicateRequestError() from exc

    db.refresh(friendship)
    logger.info("Friend request created request_id=%s requester_id=%s recipient_id=%s", friendship.id, identity.user_id, target.id)
    return friendship


def accept(db: Session, *, identity: Identity | None, request_id: str) -> Friendship:
    identity = require_identity(identity)
    request = _request_for_recipient(db, request_id=request_id, recipient_id=identity.user_id)
    if request.status == FRIENDSHIP_ACCEPTED:
        logger.debug("Friend request already accepted request_id=%s", request_id)
        return request

    request.status = FRIENDSHIP_ACCEPTED
    db.commit()
    db.refresh(request)
    logger.info("Friend request accepted request_id=%s recipient_id=%s", request_id, identity.user_id)
    return request


def reject(db: Session, *, identity: Identity | None, request_id: str) -> None:
    identity = require_identity(identity)
    request = _request_for_recipient(db, request_id=request_id, recipient_id=identity.user_id)
    if request.status != FRIENDSHIP_PENDING:
        logger.warning("Reject on non-pending request request_id=%s status=%s", request_id, request.status)
        raise NotFoundError("Friend request not found")

    db.delete(request)
    db.commit()
    logger.info("Friend request rejected request_id=%s recipient_id=%s", request_id, identity.user_id)


def are_friends(db: Session, user_id: str, other_user_id: str) -> bool:
    if user_id == other_user_id:
        return False
    friendship = db.scalar(
        select(Friendship).where(
            Friendship.pair_key == pair_key(user_id, other_user_id),
            Friendship.status == FRIENDSHIP_ACCEPTED,
        )
    )
    return friendship is not None


def _friend_entries(db: Session, rows: list[Friendship], *, viewer_id: str) -> list[dict[str, object]]:
    other_ids = [row.recipient_id if row.requester_id == viewer_id else row.requester_id for row in rows]
    users = user_hydration_service.fetch_users_by_ids(db, user_ids=other_ids)
    users_by_id = {user.id: user_hydration_service.serialize_user_public(user) for user in users}

    entries: list[dict[str, object]] = []
    for row, other_id in zip(rows, other_ids):
        friend = users_by_id.get(other_id)
        if friend is None:
            continue
        entries.append(
            {
                "friendship_id": row.id,
                "status": row.status,
                "created_at": row.created_at,
                "friend": friend,
            }
        )
    return entries


def list_accepted(db: Session, *, identity: Identity | None) -> list[dict[str, object]]:
    identity = require_identity(identity)
    rows = db.scalars(
        select(Friendship)
        .where(
            Friendship.status == FRIENDSHIP_ACCEPTED,
            or_(Friendship.requester_id == identity.user_id, Friendship.recipient_id == identity.user_id),
        )
        .order_by(Friendship.created_at.asc(), Friendship.id.asc())
    ).all()
    logger.debug("Listing accepted friends user_id=%s count=%s", identity.user_id, len(rows))
    return _friend_entries(db, list(rows), viewer_id=identity.user_id)


def list_pending(db: Session, *, identity: Identity | None) -> list[dict[str, object]]:
    """Pending requests addressed to the caller; outgoing requests are not listed."""
    identity = require_identity(identity)
    rows = db.scalars(
        select(Friendship)
        .where(Friendship.status == FRIENDSHIP_PENDING, Friendship.recipient_id == identity.user_id)
        .order_by(Friendship.created_at.asc(), Friendship.id.asc())
    ).all()
    logger.debug("Listing pending requests user_id=%s count=%s", identity.user_id, len(rows))
    return _friend_entries(db, list(rows), viewer_id=identity.user_id)

