from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class CoreError(Exception):
    """Typed failure returned to callers of the core.

    Subclasses fix ``code`` and ``status_code``; the UI layer maps ``code`` to a
    user-facing message, the HTTP layer uses ``status_code``.
    """

    code: str = "core_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None, *, details: object | None = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class NotAuthenticatedError(CoreError):
    code = "not_authenticated"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "No active identity"


class NotFoundError(CoreError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class NotAuthorizedError(CoreError):
    code = "not_authorized"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not a participant of this conversation"


class SelfReferenceError(CoreError):
    code = "self_reference"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Cannot add yourself as a friend"


class DuplicateRequestError(CoreError):
    code = "duplicate_request"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Friend request already exists"


class NotFriendsError(CoreError):
    code = "not_friends"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not friends with this user"


class EmptyContentError(CoreError):
    code = "empty_content"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Message content is empty"


class TransientError(CoreError):
    code = "transient"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Store or feed is temporarily unavailable"


class RateLimitedError(CoreError):
    code = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests"


def success_response(data: object, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"data": data})


def error_response(
    *,
    status_code: int,
    code: str,
    message: str,
    details: object | None = None,
) -> JSONResponse:
    error_payload: dict[str, object] = {"code": code, "message": message}
    if details is not None:
        error_payload["details"] = details
    payload: dict[str, object] = {"error": error_payload}
    return JSONResponse(status_code=status_code, content=payload)


def add_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CoreError)
    async def handle_core_error(_: Request, exc: CoreError) -> JSONResponse:
        return error_response(
            status_code=exc.status_code,
            code=exc.code,
            message=exc.message,
            details=exc.details,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="validation_error",
            message="Request validation failed",
            details=exc.errors(),
        )

    @app.exception_handler(HTTPException)
    async def handle_http_error(_: Request, exc: HTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return error_response(
            status_code=exc.status_code,
            code="http_error",
            message=message,
            details=None if isinstance(exc.detail, str) else exc.detail,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(_: Request, __: Exception) -> JSONResponse:
        return error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="internal_error",
            message="Internal server error",
        )
