"""
Global exception handlers.

Domain errors become the standard {"detail": {"code", "message"}} error
body; anything unexpected is logged and reported without internals.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .errors import SnapJudgeError

logger = logging.getLogger(__name__)

HTTP_STATUS_BY_CODE = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "VALIDATION": status.HTTP_400_BAD_REQUEST,
    "UNAUTHORIZED": status.HTTP_403_FORBIDDEN,
    "CONFLICT": status.HTTP_409_CONFLICT,
    "SERVER_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _error_body(code: str, message: str) -> dict:
    return {"detail": {"code": code, "message": message}}


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""

    @app.exception_handler(SnapJudgeError)
    async def snapjudge_error_handler(request: Request, exc: SnapJudgeError):
        http_status = HTTP_STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        if http_status >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        else:
            logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        return JSONResponse(status_code=http_status, content=_error_body(exc.code, str(exc)))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body("SERVER_ERROR", "Something went wrong"),
        )
