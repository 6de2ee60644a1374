"""Global error handlers: every failure becomes a JSON ``{"detail": ...}`` body."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pdash.errors import (
    AuthError,
    FetchError,
    NotFoundCondition,
    RateLimitError,
    TransientServerError,
    ValidationError,
)

logger = structlog.get_logger()


def status_for(exc: FetchError) -> int:
    """HTTP status the dashboard service answers with for a data-layer error."""
    if isinstance(exc, AuthError):
        return 401
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundCondition):
        return 404
    if isinstance(exc, RateLimitError):
        return 429
    if isinstance(exc, TransientServerError):
        return 503
    return 502


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(FetchError)
    async def fetch_error_handler(request: Request, exc: FetchError) -> JSONResponse:
        """Map data-layer errors to their status, with the user-facing message."""
        status_code = status_for(exc)
        # Auth and 5xx server text is never shown verbatim
        detail = exc.user_message if isinstance(exc, (AuthError, TransientServerError)) else exc.server_message
        content: dict[str, object] = {"detail": detail or exc.user_message}
        headers: dict[str, str] = {}
        if isinstance(exc, ValidationError) and exc.fields:
            content["errors"] = exc.fields
        if isinstance(exc, RateLimitError) and exc.retry_after is not None:
            headers["Retry-After"] = str(int(exc.retry_after))
        logger.info(
            "fetch_error_response",
            path=request.url.path,
            method=request.method,
            status=status_code,
            error_type=type(exc).__name__,
            error=exc.message,
        )
        return JSONResponse(status_code=status_code, content=content, headers=headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
