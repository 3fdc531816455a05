"""Centralized error handling for the statement API.

Every failure leaves the API in one envelope, mirroring the success
shape so clients only ever branch on ``success``:

    {
        "success": false,
        "error": "This workbook is password-protected. Password required"
    }

Engine errors (``IngestionError``) are mapped to HTTP statuses here so
the engine itself stays free of web concerns.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from packages.ingestion_engine.errors import (
    AllProvidersFailed,
    EmptyFile,
    IngestionError,
    UnreadableFile,
)

logger = structlog.get_logger()

GENERIC_ERROR = "An unexpected error occurred"


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str, status_code: int = 500):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class BadRequestError(AppError):
    """Malformed upload: missing file field, unsupported extension."""

    def __init__(self, detail: str = "Bad request"):
        super().__init__(detail=detail, status_code=400)


class PayloadTooLargeError(AppError):
    """Upload exceeds the configured size limit."""

    def __init__(self, detail: str = "File too large"):
        super().__init__(detail=detail, status_code=413)


class ClientDisconnectedError(AppError):
    """The client went away before the statement was processed."""

    def __init__(self, detail: str = "Client disconnected"):
        super().__init__(detail=detail, status_code=499)


# Engine error type to HTTP status; anything unlisted is a 500
_INGESTION_STATUS = {
    UnreadableFile: 400,
    EmptyFile: 400,
    AllProvidersFailed: 502,
}


def ingestion_status(exc: IngestionError) -> int:
    for error_type, status in _INGESTION_STATUS.items():
        if isinstance(exc, error_type):
            return status
    return 500


def _error_body(detail: str) -> dict:
    return {"success": False, "error": detail}


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        logger.info(
            "request_rejected",
            path=request.url.path,
            status=exc.status_code,
            error=exc.detail,
        )
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.detail))

    @app.exception_handler(IngestionError)
    async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
        status = ingestion_status(exc)
        detail = exc.message if status != 500 else GENERIC_ERROR
        logger.warning(
            "ingestion_failed",
            path=request.url.path,
            status=status,
            error_type=type(exc).__name__,
            error=exc.message,
        )
        return JSONResponse(status_code=status, content=_error_body(detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(status_code=422, content=_error_body("Invalid request"))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content=_error_body(detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=request.url.path)
        return JSONResponse(status_code=500, content=_error_body(GENERIC_ERROR))
