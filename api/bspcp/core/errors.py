"""Error taxonomy and the handlers that render it as JSON.

Route handlers raise these instead of building responses by hand; the handler
installed by ``install_error_handlers`` turns them into
``{"error": ..., "message": ..., <extra>}`` bodies.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, error: str, message: str | None = None, **extra):
        self.error = error
        self.message = message
        self.extra = extra
        super().__init__(error)

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.message:
            body["message"] = self.message
        body.update(self.extra)
        return body


class ValidationFailed(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT


class Locked(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class InvalidTransition(Conflict):
    """A status change that is not an allowed edge of its state machine."""

    def __init__(self, machine: str, current: str, target: str):
        super().__init__(
            f"Cannot move {machine} from {current} to {target}",
            currentStatus=current,
            requestedStatus=target,
        )


class OperationFailed(AppError):
    """Wraps an infrastructure failure with the operation that was attempted."""

    def __init__(self, error: str, details: str):
        super().__init__(error, details=details)


def invalid_payload(errors: list[dict]) -> ValidationFailed:
    """Build a 400 from pydantic error dicts (request bodies and hand-parsed forms alike)."""
    fields = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        fields.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return ValidationFailed("Validation failed", "One or more fields are invalid", fields=fields)


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = invalid_payload(exc.errors())
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def _database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    # The session dependency has already rolled back by the time we get here.
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Database operation failed", "details": str(exc.__cause__ or exc)},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, _database_error_handler)
