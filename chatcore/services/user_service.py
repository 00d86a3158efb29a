from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from chatcore.core.clock import utcnow
from chatcore.core.errors import NotAuthenticatedError, NotFoundError
from chatcore.core.security import Identity, require_identity
from chatcore.models import User
from chatcore.models.user import PRESENCE_OFFLINE

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        logger.warning("User not found user_id=%s", user_id)
        raise NotFoundError("User not found")
    return user


def find_user_by_email(db: Session, email: str) -> User | None:
    normalized = normalize_email(email)
    if not normalized:
        return None
    return db.scalar(select(User).where(func.lower(User.email) == normalized))


def upsert_profile(
    db: Session,
    *,
    identity: Identity | None,
    display_name: str | None = None,
    avatar_url: str | None = None,
) -> User:
    """Create or update the caller's own profile row.

    The email comes from the identity provider; a first call without one is
    rejected since the row cannot be addressed by friend requests otherwise.
    """
    identity = require_identity(identity)
    user = db.get(User, identity.user_id)
    if user is None:
        if not identity.email:
            logger.warning("Profile creation without email user_id=%s", identity.user_id)
            raise NotAuthenticatedError("Identity carries no email")
        user = User(
            id=identity.user_id,
            email=normalize_email(identity.email),
            display_name=display_name,
            avatar_url=avatar_url,
            status=PRESENCE_OFFLINE,
        )
        db.add(user)
        logger.info("User profile created user_id=%s", identity.user_id)
    else:
        if identity.email and normalize_email(identity.email) != user.email:
            user.email = normalize_email(identity.email)
        if display_name is not None:
            user.display_name = display_name
        if avatar_url is not None:
            user.avatar_url = avatar_url
        logger.info("User profile updated user_id=%s", identity.user_id)
    db.commit()
    db.refresh(user)
    return user


def set_presence(db: Session, *, identity: Identity | None, status: str) -> User:
    identity = require_identity(identity)
    user = get_user(db, identity.user_id)
    user.status = status
    user.last_seen_at = utcnow()
    db.commit()
    db.refresh(user)
    logger.debug("Presence updated user_id=%s status=%s", user.id, status)
    return user
