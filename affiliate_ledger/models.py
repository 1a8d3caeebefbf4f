"""SQLAlchemy models for the affiliate ledger."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from affiliate_ledger.core.delinquency import MerchantStanding, standing_for
from affiliate_ledger.database import Base

EVENT_TYPE_ENUM = ("lead", "booked_call", "purchase")
UNPAID_STATUSES = ("pending", "payable")


class Merchant(Base):
    __tablename__ = "merchants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Commission terms
    affiliate_commission_type: Mapped[str] = mapped_column(String(10), nullable=False, default="percent")
    affiliate_commission_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    platform_commission_type: Mapped[str] = mapped_column(String(10), nullable=False, default="percent")
    platform_commission_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    commission_currency: Mapped[str | None] = mapped_column(String(10), nullable=True)

    # Cached aggregates maintained by the enforcement job
    unpaid_affiliate_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    unpaid_platform_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    max_days_late: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    late_payout_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_suspended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    suspended_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_live: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )

    offers: Mapped[list["Offer"]] = relationship(back_populates="merchant", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint(
            "affiliate_commission_type IN ('percent', 'flat')", name="ck_merchants_affiliate_type_valid"
        ),
        CheckConstraint(
            "platform_commission_type IN ('percent', 'flat')", name="ck_merchants_platform_type_valid"
        ),
        CheckConstraint("affiliate_commission_value >= 0", name="ck_merchants_affiliate_value_nonnegative"),
        CheckConstraint("platform_commission_value >= 0", name="ck_merchants_platform_value_nonnegative"),
    )

    @property
    def standing(self) -> MerchantStanding:
        return standing_for(is_suspended=self.is_suspended, late_payout_flag=self.late_payout_flag)


class Offer(Base):
    __tablename__ = "offers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    merchant_id: Mapped[int] = mapped_column(ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    destination_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    merchant: Mapped[Merchant] = relationship(back_populates="offers")


class Affiliate(Base):
    __tablename__ = "affiliates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Bumped under lock whenever a ledger entry is written for this affiliate
    ledger_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    links: Mapped[list["TrackedLink"]] = relationship(back_populates="affiliate")


class TrackedLink(Base):
    __tablename__ = "tracked_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    public_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    destination_url: Mapped[str] = mapped_column(Text, nullable=False)
    affiliate_id: Mapped[int] = mapped_column(ForeignKey("affiliates.id"), nullable=False, index=True)
    merchant_id: Mapped[int] = mapped_column(ForeignKey("merchants.id"), nullable=False, index=True)
    offer_id: Mapped[int] = mapped_column(ForeignKey("offers.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    affiliate: Mapped[Affiliate] = relationship(back_populates="links")
    merchant: Mapped[Merchant] = relationship()
    offer: Mapped[Offer] = relationship()

    __table_args__ = (
        UniqueConstraint("affiliate_id", "offer_id", name="uq_tracked_links_affiliate_offer"),
    )


class Click(Base):
    __tablename__ = "clicks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    click_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    link_id: Mapped[int] = mapped_column(ForeignKey("tracked_links.id"), nullable=False, index=True)
    offer_id: Mapped[int] = mapped_column(ForeignKey("offers.id"), nullable=False)
    merchant_id: Mapped[int] = mapped_column(ForeignKey("merchants.id"), nullable=False)
    affiliate_id: Mapped[int] = mapped_column(ForeignKey("affiliates.id"), nullable=False, index=True)
    public_code: Mapped[str] = mapped_column(String(32), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm_source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_medium: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_campaign: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_term: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_content: Mapped[str | None] = mapped_column(String(255), nullable=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    link: Mapped[TrackedLink] = relationship()


class Lead(Base):
    """A conversion reported back against a click."""

    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    click_pk: Mapped[int] = mapped_column(ForeignKey("clicks.id"), nullable=False, index=True)
    click_id: Mapped[str] = mapped_column(String(36), nullable=False)
    offer_id: Mapped[int] = mapped_column(ForeignKey("offers.id"), nullable=False)
    merchant_id: Mapped[int] = mapped_column(ForeignKey("merchants.id"), nullable=False)
    affiliate_id: Mapped[int] = mapped_column(ForeignKey("affiliates.id"), nullable=False)
    link_id: Mapped[int] = mapped_column(ForeignKey("tracked_links.id"), nullable=False)
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    external_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    booking_datetime: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    event_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    click: Mapped[Click] = relationship()
    commission_event: Mapped["CommissionEvent"] = relationship(back_populates="lead", uselist=False)

    __table_args__ = (
        UniqueConstraint("click_id", "external_reference", name="uq_leads_click_external_reference"),
        CheckConstraint("event_type IN ('lead', 'booked_call', 'purchase')", name="ck_leads_event_type_valid"),
        CheckConstraint("amount >= 0", name="ck_leads_amount_nonnegative"),
    )

    @property
    def customer_name(self) -> str | None:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return None


class CommissionEvent(Base):
    """Commission ledger entry, one per lead."""

    __tablename__ = "commission_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    merchant_id: Mapped[int] = mapped_column(ForeignKey("merchants.id"), nullable=False, index=True)
    offer_id: Mapped[int] = mapped_column(ForeignKey("offers.id"), nullable=False)
    affiliate_id: Mapped[int] = mapped_column(ForeignKey("affiliates.id"), nullable=False, index=True)
    link_id: Mapped[int] = mapped_column(ForeignKey("tracked_links.id"), nullable=False, index=True)
    lead_id: Mapped[int] = mapped_column(ForeignKey("leads.id"), unique=True, nullable=False)
    click_id: Mapped[str] = mapped_column(String(36), nullable=False)
    affiliate_commission_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    platform_commission_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payable_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    payment_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    lead: Mapped[Lead] = relationship(back_populates="commission_event")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'payable', 'paid', 'void')", name="ck_commission_events_status_valid"
        ),
        CheckConstraint("affiliate_commission_amount >= 0", name="ck_commission_events_affiliate_nonnegative"),
        CheckConstraint("platform_commission_amount >= 0", name="ck_commission_events_platform_nonnegative"),
        Index("idx_commission_events_unpaid", "status", "payable_at"),
    )


class PlatformUser(Base):
    __tablename__ = "platform_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    referred_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("platform_users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)


class PaymentCustomer(Base):
    """Maps a payment processor customer id to a platform user."""

    __tablename__ = "payment_customers"

    customer_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("platform_users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)


class ReferralCommission(Base):
    __tablename__ = "referral_commissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referrer_user_id: Mapped[int] = mapped_column(ForeignKey("platform_users.id"), nullable=False, index=True)
    referred_user_id: Mapped[int] = mapped_column(ForeignKey("platform_users.id"), nullable=False)
    payment_reference: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    payment_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="payable")
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('payable', 'paid', 'void')", name="ck_referral_commissions_status_valid"),
        CheckConstraint("payment_amount > 0", name="ck_referral_commissions_amount_positive"),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor: Mapped[str | None] = mapped_column(String(100), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False, index=True)


class JobLock(Base):
    """Cross-process mutex for batch jobs; one row per running job."""

    __tablename__ = "job_locks"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    holder: Mapped[str] = mapped_column(String(100), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)
