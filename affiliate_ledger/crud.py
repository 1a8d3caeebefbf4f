"""Database access helpers."""
from __future__ import annotations

import json
import secrets
import string
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_ledger.core.delinquency import OutstandingEntry
from affiliate_ledger.core.tracking import RequestMeta
from affiliate_ledger.database import Base
from affiliate_ledger.models import (
    UNPAID_STATUSES,
    Affiliate,
    AuditLog,
    Click,
    CommissionEvent,
    JobLock,
    Lead,
    Merchant,
    Offer,
    PaymentCustomer,
    PlatformUser,
    ReferralCommission,
    TrackedLink,
)

PUBLIC_CODE_ALPHABET = string.ascii_letters + string.digits
PUBLIC_CODE_LENGTH = 8
PUBLIC_CODE_ATTEMPTS = 10


# --- Links and clicks -------------------------------------------------------

def get_link_by_code(db: Session, public_code: str) -> TrackedLink | None:
    stmt = select(TrackedLink).where(TrackedLink.public_code == public_code)
    return db.execute(stmt).scalars().first()


def generate_public_code(length: int = PUBLIC_CODE_LENGTH) -> str:
    return "".join(secrets.choice(PUBLIC_CODE_ALPHABET) for _ in range(length))


def get_or_create_tracked_link(
    db: Session,
    affiliate: Affiliate,
    offer: Offer,
    destination_url: str | None = None,
) -> TrackedLink:
    existing = db.execute(
        select(TrackedLink).where(
            TrackedLink.affiliate_id == affiliate.id,
            TrackedLink.offer_id == offer.id,
        )
    ).scalars().first()
    if existing:
        return existing

    for _ in range(PUBLIC_CODE_ATTEMPTS):
        code = generate_public_code()
        if get_link_by_code(db, code) is None:
            break
    else:
        raise ValueError("Failed to generate unique tracking code.")

    link = TrackedLink(
        public_code=code,
        destination_url=destination_url or offer.destination_url,
        affiliate_id=affiliate.id,
        merchant_id=offer.merchant_id,
        offer_id=offer.id,
    )
    db.add(link)
    db.commit()
    db.refresh(link)
    return link


def create_click(db: Session, link: TrackedLink, click_id: str, meta: RequestMeta) -> Click:
    click = Click(
        click_id=click_id,
        link_id=link.id,
        offer_id=link.offer_id,
        merchant_id=link.merchant_id,
        affiliate_id=link.affiliate_id,
        public_code=link.public_code,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
        referrer=meta.referrer,
        utm_source=meta.utm.get("utm_source"),
        utm_medium=meta.utm.get("utm_medium"),
        utm_campaign=meta.utm.get("utm_campaign"),
        utm_term=meta.utm.get("utm_term"),
        utm_content=meta.utm.get("utm_content"),
    )
    db.add(click)
    db.commit()
    return click


def get_click_by_click_id(db: Session, click_id: str) -> Click | None:
    stmt = select(Click).where(Click.click_id == click_id)
    return db.execute(stmt).scalars().first()


# --- Merchants and affiliates ----------------------------------------------

def get_merchant(db: Session, merchant_id: int) -> Merchant | None:
    return db.get(Merchant, merchant_id)


def get_affiliate(db: Session, affiliate_id: int) -> Affiliate | None:
    return db.get(Affiliate, affiliate_id)


def list_merchants_by_ids(db: Session, merchant_ids: Iterable[int]) -> Sequence[Merchant]:
    ids = list(merchant_ids)
    if not ids:
        return []
    stmt = select(Merchant).where(Merchant.id.in_(ids)).order_by(Merchant.id)
    return db.execute(stmt).scalars().all()


def list_merchants_with_cached_exposure(db: Session, exclude_ids: Iterable[int] = ()) -> Sequence[Merchant]:
    """Merchants whose cached debt fields or late flag still need clearing."""

    stmt = select(Merchant).where(
        or_(
            Merchant.late_payout_flag.is_(True),
            Merchant.unpaid_affiliate_total > 0,
            Merchant.unpaid_platform_total > 0,
            Merchant.max_days_late > 0,
        )
    )
    excluded = list(exclude_ids)
    if excluded:
        stmt = stmt.where(Merchant.id.not_in(excluded))
    return db.execute(stmt.order_by(Merchant.id)).scalars().all()


def lift_suspension(db: Session, merchant: Merchant, actor: str | None = None) -> Merchant:
    suspended_at = merchant.suspended_at
    merchant.is_suspended = False
    merchant.suspended_at = None
    merchant.is_live = True
    db.add(merchant)
    log_admin_action(
        db,
        actor,
        "lift_suspension",
        {
            "merchant_id": merchant.id,
            "suspended_at": suspended_at.isoformat() if suspended_at else None,
            "unpaid_affiliate_total": str(merchant.unpaid_affiliate_total),
            "max_days_late": merchant.max_days_late,
        },
    )
    db.commit()
    db.refresh(merchant)
    return merchant


def log_admin_action(db: Session, actor: str | None, action: str, details: dict | None = None) -> None:
    """Stage an audit row; committed with the caller's transaction."""
    db.add(AuditLog(actor=actor, action=action, details=json.dumps(details or {})))


# --- Leads and ledger -------------------------------------------------------

def lock_affiliate(db: Session, affiliate_id: int) -> bool:
    """Take the per-affiliate write lock for the current transaction.

    The version bump is an UPDATE, so it holds the affiliate row lock (or the
    SQLite write lock) until commit/rollback.
    """

    result = db.execute(
        update(Affiliate)
        .where(Affiliate.id == affiliate_id)
        .values(ledger_version=Affiliate.ledger_version + 1)
    )
    return result.rowcount == 1


def outstanding_affiliate_total(db: Session, affiliate_id: int) -> Decimal:
    stmt = select(func.coalesce(func.sum(CommissionEvent.affiliate_commission_amount), 0)).where(
        CommissionEvent.affiliate_id == affiliate_id,
        CommissionEvent.status.in_(UNPAID_STATUSES),
    )
    total = db.execute(stmt).scalar_one()
    return total if isinstance(total, Decimal) else Decimal(str(total))


def find_lead_by_reference(db: Session, click_id: str, external_reference: str) -> Lead | None:
    stmt = select(Lead).where(Lead.click_id == click_id, Lead.external_reference == external_reference)
    return db.execute(stmt).scalars().first()


def create_lead(db: Session, click: Click, **fields: Any) -> Lead:
    lead = Lead(
        click_pk=click.id,
        click_id=click.click_id,
        offer_id=click.offer_id,
        merchant_id=click.merchant_id,
        affiliate_id=click.affiliate_id,
        link_id=click.link_id,
        **fields,
    )
    db.add(lead)
    db.flush()
    return lead


def create_commission_event(
    db: Session,
    lead: Lead,
    affiliate_amount: Decimal,
    platform_amount: Decimal,
    currency: str,
    status: str,
    payable_at: datetime | None,
) -> CommissionEvent:
    event = CommissionEvent(
        merchant_id=lead.merchant_id,
        offer_id=lead.offer_id,
        affiliate_id=lead.affiliate_id,
        link_id=lead.link_id,
        lead_id=lead.id,
        click_id=lead.click_id,
        affiliate_commission_amount=affiliate_amount,
        platform_commission_amount=platform_amount,
        currency=currency,
        status=status,
        payable_at=payable_at,
    )
    db.add(event)
    db.flush()
    return event


def list_outstanding_entries(db: Session) -> list[OutstandingEntry]:
    stmt = select(
        CommissionEvent.merchant_id,
        CommissionEvent.payable_at,
        CommissionEvent.affiliate_commission_amount,
        CommissionEvent.platform_commission_amount,
    ).where(
        CommissionEvent.status.in_(UNPAID_STATUSES),
        CommissionEvent.payable_at.is_not(None),
    )
    return [
        OutstandingEntry(
            merchant_id=merchant_id,
            payable_at=payable_at,
            affiliate_amount=Decimal(str(affiliate_amount)),
            platform_amount=Decimal(str(platform_amount)),
        )
        for merchant_id, payable_at, affiliate_amount, platform_amount in db.execute(stmt).all()
    ]


def affiliate_stats(db: Session, affiliate_id: int, link_id: int | None = None) -> dict[str, Decimal | int]:
    totals_stmt = (
        select(
            CommissionEvent.status,
            func.count(CommissionEvent.id),
            func.coalesce(func.sum(CommissionEvent.affiliate_commission_amount), 0),
        )
        .where(CommissionEvent.affiliate_id == affiliate_id)
        .group_by(CommissionEvent.status)
    )
    clicks_stmt = select(func.count(Click.id)).where(Click.affiliate_id == affiliate_id)
    if link_id is not None:
        totals_stmt = totals_stmt.where(CommissionEvent.link_id == link_id)
        clicks_stmt = clicks_stmt.where(Click.link_id == link_id)

    stats: dict[str, Decimal | int] = {
        "clicks": db.execute(clicks_stmt).scalar_one() or 0,
        "conversions": 0,
        "pending": Decimal("0"),
        "payable": Decimal("0"),
        "paid": Decimal("0"),
    }
    for status, count, total in db.execute(totals_stmt).all():
        # Every ledger entry is a conversion, void ones included
        stats["conversions"] += int(count)
        if status in ("pending", "payable", "paid"):
            stats[status] = Decimal(str(total))
    return stats


# --- Platform referrals -----------------------------------------------------

def get_payment_customer(db: Session, customer_id: str) -> PaymentCustomer | None:
    return db.get(PaymentCustomer, customer_id)


def get_platform_user(db: Session, user_id: int) -> PlatformUser | None:
    return db.get(PlatformUser, user_id)


def get_referral_commission_by_reference(db: Session, payment_reference: str) -> ReferralCommission | None:
    stmt = select(ReferralCommission).where(ReferralCommission.payment_reference == payment_reference)
    return db.execute(stmt).scalars().first()


def create_referral_commission(db: Session, **fields: Any) -> ReferralCommission:
    commission = ReferralCommission(**fields)
    db.add(commission)
    db.commit()
    db.refresh(commission)
    return commission


# --- Job locks ----------------------------------------------------------------

def acquire_job_lock(db: Session, name: str, holder: str, now: datetime, ttl: timedelta) -> bool:
    """Insert the lock row; take over a lock older than ``ttl``. False if held."""

    existing = db.get(JobLock, name)
    if existing is None:
        db.add(JobLock(name=name, holder=holder, acquired_at=now))
        try:
            db.commit()
            return True
        except IntegrityError:
            db.rollback()
            return False

    if existing.acquired_at >= now - ttl:
        return False

    # Compare-and-swap on the old timestamp so only one process takes over
    result = db.execute(
        update(JobLock)
        .where(JobLock.name == name, JobLock.acquired_at == existing.acquired_at)
        .values(holder=holder, acquired_at=now)
    )
    db.commit()
    return result.rowcount == 1


def release_job_lock(db: Session, name: str, holder: str) -> None:
    db.execute(delete(JobLock).where(JobLock.name == name, JobLock.holder == holder))
    db.commit()


# --- Maintenance --------------------------------------------------------------

def reset_application_data(db: Session) -> None:
    """Delete every row from every table (tests and local resets)."""
    for table in reversed(Base.metadata.sorted_tables):
        db.execute(table.delete())
    db.commit()
