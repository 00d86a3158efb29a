from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from chatcore.core.errors import NotAuthenticatedError
from chatcore.core.settings import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Identity:
    """The authenticated caller, passed explicitly into every core operation."""

    user_id: str
    email: str | None = None


def require_identity(identity: Identity | None) -> Identity:
    if identity is None or not identity.user_id:
        logger.warning("Operation attempted without an active identity")
        raise NotAuthenticatedError()
    return identity


def create_access_token(*, subject: str, email: str | None = None, expires_delta: timedelta | None = None) -> str:
    settings = get_settings()
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload: dict[str, object] = {"sub": subject, "type": "access", "iat": int(now.timestamp()), "exp": int(expire.timestamp())}
    if email is not None:
        payload["email"] = email
    logger.debug("Creating access token subject=%s expires_at=%s", subject, expire.isoformat())
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, object]:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        logger.warning("Access token decode failed")
        raise NotAuthenticatedError("Invalid or expired access token") from exc

    if payload.get("type") != "access":
        logger.warning("Invalid token type in access token payload")
        raise NotAuthenticatedError("Invalid token type")

    logger.debug("Access token decoded subject=%s", payload.get("sub"))
    return payload


def identity_from_token(token: str) -> Identity:
    payload = decode_access_token(token)
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        logger.warning("Token subject is invalid")
        raise NotAuthenticatedError("Token payload is invalid")
    email = payload.get("email")
    return Identity(user_id=subject, email=email if isinstance(email, str) else None)
