"""Merchant standing, enforcement trigger and suspension lift."""
from __future__ import annotations

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from affiliate_ledger import crud
from affiliate_ledger.dependencies import get_db, require_admin_token
from affiliate_ledger.errors import NotFoundError
from affiliate_ledger.schemas import EnforcementSummary, LiftSuspensionPayload, MerchantStandingRead
from affiliate_ledger.services import EnforcementService

router = APIRouter(tags=["Merchants"])


@router.get("/merchants/{merchant_id}/standing", response_model=MerchantStandingRead)
def merchant_standing(merchant_id: int, db: Session = Depends(get_db)) -> MerchantStandingRead:
    merchant = crud.get_merchant(db, merchant_id)
    if merchant is None:
        raise NotFoundError("Merchant not found", {"merchant_id": merchant_id})
    return MerchantStandingRead.model_validate(merchant)


@router.post("/jobs/enforce-late-payments", response_model=EnforcementSummary)
def enforce_late_payments(
    db: Session = Depends(get_db),
    _: str = Depends(require_admin_token),
) -> EnforcementSummary:
    """Run late-payment enforcement now (same job the scheduler runs)."""
    return EnforcementService(db).enforce_late_payments()


@router.post("/merchants/{merchant_id}/lift-suspension", response_model=MerchantStandingRead)
def lift_suspension(
    merchant_id: int,
    payload: LiftSuspensionPayload | None = Body(default=None),
    db: Session = Depends(get_db),
    _: str = Depends(require_admin_token),
) -> MerchantStandingRead:
    actor = payload.actor if payload else None
    merchant = EnforcementService(db).lift_suspension(merchant_id, actor=actor or "admin-api")
    return MerchantStandingRead.model_validate(merchant)
