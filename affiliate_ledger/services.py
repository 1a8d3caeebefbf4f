"""Application service layer: attribution, enforcement and platform referrals."""
from __future__ import annotations

import logging
import os
import socket
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from affiliate_ledger import crud
from affiliate_ledger.core.commission import (
    CommissionTerms,
    compute_breakdown,
    compute_commission,
    quantize_money,
    to_decimal,
)
from affiliate_ledger.core.delinquency import next_standing, summarize_exposures
from affiliate_ledger.core.formatting import format_money
from affiliate_ledger.core.payout_threshold import evaluate_threshold
from affiliate_ledger.core.tracking import RequestMeta, build_redirect_url
from affiliate_ledger.errors import InternalError, JobAlreadyRunning, NotFoundError, PayloadError
from affiliate_ledger.models import CommissionEvent, Lead, Merchant, TrackedLink
from affiliate_ledger.schemas import (
    ConversionPayload,
    ConversionResult,
    EnforcementSummary,
    ReferralCommissionResult,
    ReferralPaymentPayload,
)

logger = logging.getLogger(__name__)

DEFAULT_COMMISSION_CURRENCY = os.getenv("DEFAULT_COMMISSION_CURRENCY", "USD")
PLATFORM_REFERRAL_RATE = to_decimal(os.getenv("PLATFORM_REFERRAL_RATE", "20"))
JOB_LOCK_TTL = timedelta(minutes=int(os.getenv("JOB_LOCK_TTL_MINUTES", "60")))
ENFORCEMENT_JOB_NAME = "enforce_late_payments"

DUPLICATE_MESSAGE = "Duplicate delivery - conversion already recorded"


@dataclass
class RedirectTarget:
    url: str
    click_id: str
    link_id: int
    recorded: bool


class AttributionService:
    """Clicks in, conversions in, ledger entries out."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def resolve_link(self, public_code: str) -> TrackedLink:
        link = crud.get_link_by_code(self.db, public_code)
        if link is None:
            raise NotFoundError("Invalid tracking code", {"public_code": public_code})
        return link

    def record_click(self, public_code: str, meta: RequestMeta) -> RedirectTarget:
        link = self.resolve_link(public_code)
        click_id = str(uuid.uuid4())
        recorded = True
        try:
            crud.create_click(self.db, link, click_id, meta)
        except SQLAlchemyError:
            # Redirect regardless; the click is simply not stored.
            self.db.rollback()
            recorded = False
            logger.exception("Error logging click %s for tracking code %s", click_id, public_code)

        return RedirectTarget(
            url=build_redirect_url(link.destination_url, click_id, meta.utm),
            click_id=click_id,
            link_id=link.id,
            recorded=recorded,
        )

    def ingest_conversion(self, payload: ConversionPayload, now: datetime | None = None) -> ConversionResult:
        click = crud.get_click_by_click_id(self.db, payload.ina_click_id)
        if click is None:
            raise NotFoundError("Invalid click ID", {"ina_click_id": payload.ina_click_id})

        merchant = crud.get_merchant(self.db, click.merchant_id)
        if merchant is None:
            raise NotFoundError("Merchant not found", {"merchant_id": click.merchant_id})

        if payload.order_id:
            existing = crud.find_lead_by_reference(self.db, click.click_id, payload.order_id)
            if existing is not None and existing.commission_event is not None:
                logger.info("Duplicate conversion for click %s order %s", click.click_id, payload.order_id)
                return self._duplicate_result(existing)

        amount = payload.amount if payload.amount is not None else Decimal("0")
        currency = payload.currency or merchant.commission_currency or DEFAULT_COMMISSION_CURRENCY
        breakdown = compute_breakdown(amount, *self._terms(merchant))
        now = now or datetime.now()

        try:
            # Lead and ledger entry commit together; the affiliate lock keeps the
            # outstanding-balance read and the insert serialized per affiliate.
            crud.lock_affiliate(self.db, click.affiliate_id)
            lead = crud.create_lead(
                self.db,
                click,
                event_type=payload.event_type,
                amount=amount,
                currency=currency,
                external_reference=payload.order_id,
                email=payload.email,
                first_name=payload.first_name,
                last_name=payload.last_name,
                phone=payload.phone,
                booking_datetime=payload.booking_datetime,
                event_metadata=payload.metadata,
            )
            outstanding = crud.outstanding_affiliate_total(self.db, click.affiliate_id)
            decision = evaluate_threshold(outstanding, breakdown.affiliate_rounded)
            event = crud.create_commission_event(
                self.db,
                lead,
                affiliate_amount=breakdown.affiliate_rounded,
                platform_amount=breakdown.platform_rounded,
                currency=currency,
                status=decision.status,
                payable_at=now if decision.is_payable else None,
            )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if payload.order_id:
                existing = crud.find_lead_by_reference(self.db, click.click_id, payload.order_id)
                if existing is not None and existing.commission_event is not None:
                    logger.info("Concurrent duplicate conversion for click %s", click.click_id)
                    return self._duplicate_result(existing)
            logger.exception("Integrity error recording conversion for click %s", click.click_id)
            raise InternalError("Failed to record conversion") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Error recording conversion for click %s", click.click_id)
            raise InternalError("Failed to record conversion") from exc

        logger.info(
            "Recorded %s for affiliate %s: affiliate %s %s, platform %s %s (%s)",
            payload.event_type,
            click.affiliate_id,
            format_money(event.affiliate_commission_amount),
            currency,
            format_money(event.platform_commission_amount),
            currency,
            event.status,
        )
        return ConversionResult(
            lead_id=lead.id,
            commission_event_id=event.id,
            affiliate_commission_amount=event.affiliate_commission_amount,
            ina_commission_amount=event.platform_commission_amount,
            currency=currency,
            status=event.status,
            message=decision.message(),
        )

    @staticmethod
    def _terms(merchant: Merchant) -> tuple[CommissionTerms, CommissionTerms]:
        return (
            CommissionTerms(merchant.affiliate_commission_type, to_decimal(merchant.affiliate_commission_value)),
            CommissionTerms(merchant.platform_commission_type, to_decimal(merchant.platform_commission_value)),
        )

    @staticmethod
    def _duplicate_result(lead: Lead) -> ConversionResult:
        event: CommissionEvent = lead.commission_event
        return ConversionResult(
            lead_id=lead.id,
            commission_event_id=event.id,
            affiliate_commission_amount=event.affiliate_commission_amount,
            ina_commission_amount=event.platform_commission_amount,
            currency=event.currency,
            status=event.status,
            message=DUPLICATE_MESSAGE,
            duplicate=True,
        )


class EnforcementService:
    """Late-payment enforcement over merchant accounts."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def enforce_late_payments(self, now: datetime | None = None, holder: str | None = None) -> EnforcementSummary:
        now = now or datetime.now()
        holder = holder or f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"
        if not crud.acquire_job_lock(self.db, ENFORCEMENT_JOB_NAME, holder, now, JOB_LOCK_TTL):
            raise JobAlreadyRunning("Late-payment enforcement is already running")
        try:
            summary = self._enforce(now)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Late-payment enforcement failed")
            raise InternalError("Failed to enforce late payments") from exc
        finally:
            # Drop any half-applied merchant updates before the lock commit
            self.db.rollback()
            crud.release_job_lock(self.db, ENFORCEMENT_JOB_NAME, holder)

        logger.info(
            "Late-payment enforcement: processed=%s flagged=%s suspended=%s reset=%s",
            summary.processed,
            summary.flagged,
            summary.suspended,
            summary.reset,
        )
        return summary

    def _enforce(self, now: datetime) -> EnforcementSummary:
        exposures = summarize_exposures(crud.list_outstanding_entries(self.db), now)

        for merchant in crud.list_merchants_by_ids(self.db, exposures.keys()):
            exposure = exposures[merchant.id]
            previous = merchant.standing
            standing = next_standing(previous, exposure)
            merchant.max_days_late = exposure.max_days_late
            merchant.unpaid_affiliate_total = exposure.unpaid_affiliate_total
            merchant.unpaid_platform_total = exposure.unpaid_platform_total
            merchant.late_payout_flag = exposure.should_flag
            if exposure.should_suspend:
                merchant.is_suspended = True
                merchant.is_live = False
                if merchant.suspended_at is None:
                    merchant.suspended_at = now
            if standing is not previous:
                logger.warning(
                    "Merchant %s moved %s -> %s: %s days late, %s unpaid",
                    merchant.id,
                    previous.value,
                    standing.value,
                    exposure.max_days_late,
                    format_money(exposure.unpaid_affiliate_total),
                )

        reset = 0
        for merchant in crud.list_merchants_with_cached_exposure(self.db, exclude_ids=exposures.keys()):
            # Suspension is left alone; lifting it is an administrative action.
            merchant.late_payout_flag = False
            merchant.max_days_late = 0
            merchant.unpaid_affiliate_total = Decimal("0")
            merchant.unpaid_platform_total = Decimal("0")
            reset += 1

        self.db.commit()
        return EnforcementSummary(
            processed=len(exposures),
            flagged=sum(1 for exposure in exposures.values() if exposure.should_flag),
            suspended=sum(1 for exposure in exposures.values() if exposure.should_suspend),
            reset=reset,
            ran_at=now,
        )

    def lift_suspension(self, merchant_id: int, actor: str | None = None) -> Merchant:
        merchant = crud.get_merchant(self.db, merchant_id)
        if merchant is None:
            raise NotFoundError("Merchant not found", {"merchant_id": merchant_id})
        if not merchant.is_suspended:
            raise PayloadError("Merchant is not suspended", {"merchant_id": merchant_id})
        merchant = crud.lift_suspension(self.db, merchant, actor)
        logger.info("Suspension lifted for merchant %s by %s", merchant_id, actor or "unknown")
        return merchant


class ReferralCommissionService:
    """Platform self-referral commissions fed by payment processor events."""

    def __init__(self, db: Session, rate: Decimal = PLATFORM_REFERRAL_RATE) -> None:
        self.db = db
        self.rate = rate

    def record_payment(self, payload: ReferralPaymentPayload) -> ReferralCommissionResult:
        if payload.amount <= 0:
            return self._skipped("Payment amount is zero")

        existing = crud.get_referral_commission_by_reference(self.db, payload.payment_reference)
        if existing is not None:
            return self._recorded(existing, duplicate=True)

        customer = crud.get_payment_customer(self.db, payload.customer_id)
        if customer is None:
            logger.info("No user found for customer %s, skipping commission", payload.customer_id)
            return self._skipped("No user found for customer")

        user = crud.get_platform_user(self.db, customer.user_id)
        if user is None or user.referred_by_user_id is None:
            logger.info("User %s has no referrer, skipping commission", customer.user_id)
            return self._skipped("User has no referrer")

        commission_amount = quantize_money(compute_commission(payload.amount, "percent", self.rate))
        try:
            commission = crud.create_referral_commission(
                self.db,
                referrer_user_id=user.referred_by_user_id,
                referred_user_id=user.id,
                payment_reference=payload.payment_reference,
                payment_amount=quantize_money(payload.amount),
                commission_rate=self.rate,
                commission_amount=commission_amount,
                currency=payload.currency.upper(),
                status="payable",
            )
        except IntegrityError as exc:
            self.db.rollback()
            existing = crud.get_referral_commission_by_reference(self.db, payload.payment_reference)
            if existing is not None:
                return self._recorded(existing, duplicate=True)
            logger.exception("Error recording referral commission for %s", payload.payment_reference)
            raise InternalError("Failed to record referral commission") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Error recording referral commission for %s", payload.payment_reference)
            raise InternalError("Failed to record referral commission") from exc

        logger.info(
            "Recorded $%s commission for referrer %s", format_money(commission_amount), user.referred_by_user_id
        )
        return self._recorded(commission)

    @staticmethod
    def _skipped(reason: str) -> ReferralCommissionResult:
        return ReferralCommissionResult(recorded=False, reason=reason)

    @staticmethod
    def _recorded(commission, duplicate: bool = False) -> ReferralCommissionResult:
        return ReferralCommissionResult(
            recorded=True,
            commission_id=commission.id,
            referrer_user_id=commission.referrer_user_id,
            commission_amount=commission.commission_amount,
            currency=commission.currency,
            duplicate=duplicate,
        )
