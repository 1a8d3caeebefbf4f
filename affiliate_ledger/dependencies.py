"""Shared FastAPI dependencies."""
from __future__ import annotations

import hmac
import os

from fastapi import Header

from affiliate_ledger.database import get_session
from affiliate_ledger.errors import ErrorCodes, LedgerError


class ForbiddenError(LedgerError):
    code = ErrorCodes.FORBIDDEN
    status_code = 403


def require_admin_token(x_admin_token: str | None = Header(default=None)) -> str:
    """Dependency guarding administrative endpoints with a shared secret.

    The token is read per request so deployments can rotate it without a
    restart. With no token configured the admin surface is closed.
    """
    expected = os.getenv("AFFILIATE_LEDGER_ADMIN_TOKEN")
    if not expected:
        raise ForbiddenError("Admin endpoints are disabled")
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise ForbiddenError("Admin access required")
    return x_admin_token


get_db = get_session
