# utils/errors.py
import logging
from typing import List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base for every failure that is reported to the caller.

    `kind` is the stable category (one per HTTP status), `code` names the
    specific failure inside that category.
    """

    kind = "Error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Something went wrong. Please try again later."

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None,
                 errors: Optional[List[dict]] = None):
        self.message = message or self.default_message
        self.code = code or self.__class__.__name__
        self.errors = errors or []
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"success": False, "kind": self.kind, "code": self.code, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


# ---------------- Categories ---------------- #
class ValidationError(APIError):
    kind = "ValidationError"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"

    @classmethod
    def for_field(cls, field: str, message: str, **kw):
        return cls(message, errors=[{"field": field, "message": message}], **kw)


class Unauthenticated(APIError):
    kind = "Unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required. Please login."


class Forbidden(APIError):
    kind = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied. Insufficient permissions."


class NotFound(APIError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class Conflict(APIError):
    kind = "Conflict"
    status_code = status.HTTP_409_CONFLICT
    default_message = "The request conflicts with the current state of the resource"


class RateLimited(APIError):
    kind = "RateLimited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests. Please try again later."

    def __init__(self, message: Optional[str] = None, *, remaining_seconds: int, **kw):
        super().__init__(message, **kw)
        self.remaining_seconds = max(0, int(remaining_seconds))

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["remainingSeconds"] = self.remaining_seconds
        return body


class Unavailable(APIError):
    kind = "Unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "The service is temporarily unavailable. Please try again."


# ---------------- Specific failures ---------------- #
class InvalidCredentials(Unauthenticated):
    default_message = "Invalid email or password"


class WeakPassword(ValidationError):
    default_message = "Password does not meet the password policy"


class PasswordReuse(ValidationError):
    default_message = "New password must be different from current password"


class InvalidOrExpiredToken(ValidationError):
    default_message = "Reset link is invalid or has expired"


class PasswordChangeRequired(Forbidden):
    default_message = "Password change required. Please change your password first."

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["requirePasswordChange"] = True
        return body


class AlreadyResolved(Conflict):
    default_message = "Resolved complaints cannot be updated"


class AlreadyRated(Conflict):
    default_message = "This complaint has already been rated"


class InvalidState(Conflict):
    default_message = "The complaint is not in a state that allows this action"


class DuplicateEmail(Conflict):
    default_message = "A user with this email already exists"


# ---------------- Handlers ---------------- #
def _format_request_errors(exc: RequestValidationError) -> List[dict]:
    out = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        msg = err.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        out.append({"field": ".".join(loc), "message": msg})
    return out


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(APIError)
    async def _api_error(request: Request, exc: APIError):
        if exc.status_code >= 500:
            logger.error("%s %s -> %s (%s)", request.method, request.url.path, exc.kind, exc.code)
        else:
            logger.info("%s %s -> %s (%s)", request.method, request.url.path, exc.kind, exc.code)
        headers = None
        if isinstance(exc, RateLimited):
            headers = {"Retry-After": str(exc.remaining_seconds)}
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError):
        err = ValidationError(errors=_format_request_errors(exc))
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    @app.exception_handler(SQLAlchemyError)
    async def _store_failure(request: Request, exc: SQLAlchemyError):
        logger.error("store failure on %s %s: %s", request.method, request.url.path, exc.__class__.__name__)
        err = Unavailable()
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        kinds = {401: Unauthenticated, 403: Forbidden, 404: NotFound, 405: ValidationError, 409: Conflict}
        err = kinds.get(exc.status_code, APIError)(str(exc.detail) if exc.detail else None)
        return JSONResponse(status_code=exc.status_code, content=err.to_dict())
