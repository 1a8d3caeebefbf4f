"""Tracked link redirects."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from affiliate_ledger.core.tracking import RequestMeta
from affiliate_ledger.dependencies import get_db
from affiliate_ledger.services import AttributionService

router = APIRouter(tags=["Tracking"])


@router.get("/r/{public_code}")
def redirect(public_code: str, request: Request, db: Session = Depends(get_db)) -> RedirectResponse:
    """Record the click and send the visitor on to the merchant."""
    meta = RequestMeta.from_request_parts(
        request.headers,
        request.query_params,
        client_host=request.client.host if request.client else None,
    )
    target = AttributionService(db).record_click(public_code, meta)
    return RedirectResponse(url=target.url, status_code=status.HTTP_302_FOUND)
