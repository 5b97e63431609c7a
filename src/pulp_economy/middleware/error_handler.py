"""Exception handlers: domain errors verbatim, everything else generic."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pulp_economy.errors import EconomyError, StorageError, ValidationError, WindowAlreadyOpenError

logger = structlog.get_logger()


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

    @app.exception_handler(EconomyError)
    async def economy_exception_handler(request: Request, exc: EconomyError) -> JSONResponse:
        """Rule violations go back to the player as-is; storage failures do not."""
        if isinstance(exc, StorageError):
            logger.error(
                "storage_error",
                path=request.url.path,
                method=request.method,
                error=exc.message,
                exc_info=exc,
            )
            return JSONResponse(status_code=500, content={"detail": "Internal server error"})

        content: dict[str, object] = {"detail": exc.message}
        if isinstance(exc, WindowAlreadyOpenError):
            content["seconds_remaining"] = exc.seconds_remaining
        elif isinstance(exc, ValidationError) and exc.field:
            content["field"] = exc.field
        logger.info("economy_rejected", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
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
