"""Domain errors and their JSON rendering."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCodes:
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    JOB_ALREADY_RUNNING = "JOB_ALREADY_RUNNING"
    FORBIDDEN = "FORBIDDEN"


class LedgerError(Exception):
    """Base error carrying the HTTP status and whether a retry can succeed."""

    code = ErrorCodes.INTERNAL_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(LedgerError):
    """Unknown tracking code, click, merchant or affiliate."""

    code = ErrorCodes.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND


class PayloadError(LedgerError):
    """Malformed or unsupported input."""

    code = ErrorCodes.VALIDATION_ERROR
    status_code = status.HTTP_400_BAD_REQUEST


class InternalError(LedgerError):
    """Store failure; the whole operation was rolled back and may be retried."""

    retryable = True


class JobAlreadyRunning(LedgerError):
    code = ErrorCodes.JOB_ALREADY_RUNNING
    status_code = status.HTTP_409_CONFLICT
    retryable = True


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render body validation failures as 400 in the ledger error shape."""
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    error = PayloadError("Invalid request: " + "; ".join(problems))
    return JSONResponse(status_code=error.status_code, content=error.to_payload())
