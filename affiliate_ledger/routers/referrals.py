"""Platform referral commissions reported by the payment processor integration."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from affiliate_ledger.dependencies import get_db, require_admin_token
from affiliate_ledger.schemas import ReferralCommissionResult, ReferralPaymentPayload
from affiliate_ledger.services import ReferralCommissionService

router = APIRouter(prefix="/referrals", tags=["Referrals"])


@router.post("/payments", response_model=ReferralCommissionResult)
def record_referral_payment(
    payload: ReferralPaymentPayload,
    db: Session = Depends(get_db),
    _: str = Depends(require_admin_token),
) -> ReferralCommissionResult:
    """Record the referrer's cut of a paid invoice or checkout, once per payment."""
    return ReferralCommissionService(db).record_payment(payload)
