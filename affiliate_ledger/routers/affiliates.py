"""Read-only affiliate earnings views."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from affiliate_ledger import crud
from affiliate_ledger.dependencies import get_db
from affiliate_ledger.errors import NotFoundError
from affiliate_ledger.schemas import AffiliateStats

router = APIRouter(prefix="/affiliates", tags=["Affiliates"])


@router.get("/{affiliate_id}/stats", response_model=AffiliateStats)
def affiliate_stats(
    affiliate_id: int,
    link_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
) -> AffiliateStats:
    if crud.get_affiliate(db, affiliate_id) is None:
        raise NotFoundError("Affiliate not found", {"affiliate_id": affiliate_id})
    stats = crud.affiliate_stats(db, affiliate_id, link_id=link_id)
    return AffiliateStats(affiliate_id=affiliate_id, link_id=link_id, **stats)
