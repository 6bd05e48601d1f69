"""FastAPI error handler registration for conversion errors."""
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from videoconv.errors import ConversionError
from videoconv.schemas.convert import ErrorResponse

logger = logging.getLogger(__name__)


async def _conversion_error_handler(request: Request, exc: ConversionError) -> JSONResponse:
    resp = ErrorResponse(error=exc.message, kind=exc.kind)
    return JSONResponse(status_code=exc.status_code, content=resp.model_dump())


def register_error_handlers(app: FastAPI) -> None:
    """Register the ConversionError handler and a catch-all on the FastAPI app."""
    app.add_exception_handler(ConversionError, _conversion_error_handler)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
        resp = ErrorResponse(error="Internal server error", kind="InternalError")
        return JSONResponse(status_code=500, content=resp.model_dump())
