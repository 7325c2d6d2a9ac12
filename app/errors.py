"""Error taxonomy for marketplace operations and the JSON handlers that render it.

Every error is an ``HTTPException`` so services can raise them the same way
they raise plain ``HTTPException``; the subclass tells callers (and tests)
which kind of failure happened when two kinds share a status code.
"""

import logging

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings

logger = logging.getLogger(__name__)


class MarketplaceError(HTTPException):
    status_code_default = 500
    kind = "unexpected"

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=self.status_code_default, detail=detail)


class NotFoundError(MarketplaceError):
    status_code_default = 404
    kind = "not_found"


class ForbiddenError(MarketplaceError):
    status_code_default = 403
    kind = "forbidden"


class InvalidStateError(MarketplaceError):
    """The job's current status does not allow the requested operation."""

    status_code_default = 400
    kind = "invalid_state"


class ValidationFailedError(MarketplaceError):
    status_code_default = 400
    kind = "validation"


class ConflictError(MarketplaceError):
    """The precondition held when the job was read but not when it was written."""

    status_code_default = 409
    kind = "conflict"


class PaymentDeclinedError(MarketplaceError):
    status_code_default = 400
    kind = "payment_declined"


class InvariantViolation(RuntimeError):
    """Raised when a write would leave a job in an internally inconsistent state."""


def _error_body(message: str, kind: str, errors: list | None = None) -> dict:
    body = {"success": False, "message": message, "detail": message, "error": kind}
    if errors:
        body["errors"] = errors
    return body


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    kind = getattr(exc, "kind", "http_error")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code >= 500:
        logger.error("%s %s failed with %d: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(message, kind),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "Invalid value"),
        }
        for err in jsonable_encoder(exc.errors())
    ]
    message = errors[0]["message"] if errors else "Invalid request"
    return JSONResponse(status_code=400, content=_error_body(message, "validation", errors))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = _error_body("Server error", "unexpected")
    if settings.debug:
        body["detail"] = f"{type(exc).__name__}: {exc}"
    return JSONResponse(status_code=500, content=body)
