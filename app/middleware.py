"""Application middleware: request body size limit, HSTS, security headers."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject request bodies over the limit based on Content-Length.

    Multipart uploads get their own, larger limit (max_upload_bytes).
    """

    def __init__(self, app, max_bytes: int = 1_048_576, max_upload_bytes: int | None = None) -> None:  # type: ignore[no-untyped-def]
        super().__init__(app)
        self.max_bytes = max_bytes
        self.max_upload_bytes = max_upload_bytes or max_bytes

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        if request.method in ("POST", "PATCH", "PUT"):
            content_type = request.headers.get("content-type", "")
            limit = (
                self.max_upload_bytes
                if content_type.startswith("multipart/form-data")
                else self.max_bytes
            )
            content_length = request.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > limit:
                return JSONResponse(
                    status_code=413,
                    content={
                        "success": False,
                        "message": f"Request body too large (max {limit} bytes)",
                        "detail": f"Request body too large (max {limit} bytes)",
                        "error": "payload_too_large",
                    },
                )
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        response = await call_next(request)
        response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response
