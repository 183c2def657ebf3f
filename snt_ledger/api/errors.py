"""API error handling and response helpers."""

import logging
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from snt_ledger.services.errors import LedgerError

logger = logging.getLogger(__name__)


class Forbidden(LedgerError):
    """Caller lacks a staff role allowed to mutate the ledger."""

    def __init__(self, message: str = "Staff role required"):
        super().__init__(message, "forbidden", status.HTTP_403_FORBIDDEN)


def error_response(error: LedgerError) -> Dict[str, Any]:
    """Create a standardized error response."""
    return {
        "error": {
            "code": error.code,
            "message": error.message,
        }
    }


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content=error_response(exc))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, ledger_error_handler)


__all__ = ["Forbidden", "error_response", "register_error_handlers"]
