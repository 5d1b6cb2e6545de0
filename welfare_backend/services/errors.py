"""Domain errors raised by the conversation and analysis stores."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for store failures surfaced to callers."""


class ValidationError(StoreError):
    """A payload violated a constraint; nothing was written."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class NotFoundError(StoreError):
    """A direct-by-id lookup found no live record."""


class StorageUnavailableError(StoreError):
    """The database could not complete the operation; the session was rolled back."""


HTTP_STATUS_BY_ERROR = {
    ValidationError: 400,
    NotFoundError: 404,
    StorageUnavailableError: 503,
}


def http_status_for(exc: StoreError) -> int:
    for error_type, status_code in HTTP_STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


def error_payload(exc: StoreError) -> dict:
    payload = {"success": False, "error": str(exc)}
    field = getattr(exc, "field", None)
    if field:
        payload["field"] = field
    return payload


def register_exception_handlers(app: FastAPI) -> None:
    """Render every ``StoreError`` as ``{"success": false, "error": ...}``."""

    @app.exception_handler(StoreError)
    async def _store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        status_code = http_status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.warning("%s %s rejected (%d): %s", request.method, request.url.path, status_code, exc)
        return JSONResponse(status_code=status_code, content=error_payload(exc))
