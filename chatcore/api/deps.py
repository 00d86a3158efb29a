from __future__ import annotations

import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chatcore.core.errors import NotAuthenticatedError
from chatcore.core.security import Identity, identity_from_token

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_identity(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> Identity:
    if credentials is None or not credentials.credentials:
        logger.debug("Request without bearer token")
        raise NotAuthenticatedError()
    identity = identity_from_token(credentials.credentials)
    logger.debug("Resolved identity user_id=%s", identity.user_id)
    return identity
