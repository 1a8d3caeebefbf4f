"""Pydantic schemas for webhook payloads and API responses."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, ValidationInfo, field_validator

from affiliate_ledger.core.formatting import parse_datetime
from affiliate_ledger.models import EVENT_TYPE_ENUM

# Money is a JSON number on the wire.
Money = Annotated[Decimal, PlainSerializer(lambda value: float(value), return_type=float, when_used="json")]


class ConversionPayload(BaseModel):
    ina_click_id: str = Field(..., min_length=1, max_length=64)
    event_type: str
    amount: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, max_length=10)
    email: Optional[str] = Field(None, max_length=255)
    first_name: Optional[str] = Field(None, max_length=200)
    last_name: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=50)
    order_id: Optional[str] = Field(None, max_length=255)
    booking_datetime: Optional[datetime] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("ina_click_id", mode="before")
    def strip_click_id(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("event_type")
    def validate_event_type(cls, value: str) -> str:
        if value not in EVENT_TYPE_ENUM:
            raise ValueError("Invalid event_type. Must be: lead, booked_call, or purchase")
        return value

    @field_validator("currency")
    def normalize_currency(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip().upper()

    @field_validator("email", "first_name", "last_name", "phone", "order_id", mode="before")
    def blank_to_none(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return None
        value_str = str(value).strip()
        return value_str or None

    @field_validator("booking_datetime", mode="before")
    def parse_booking_datetime(cls, value: Any) -> Any:
        return parse_datetime(value)

    @field_validator("amount")
    def quantize_amount(cls, value: Decimal | None) -> Decimal | None:
        if value is None:
            return None
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class ConversionResult(BaseModel):
    success: bool = True
    lead_id: int
    commission_event_id: int
    affiliate_commission_amount: Money
    ina_commission_amount: Money
    currency: str
    status: str
    message: str
    duplicate: bool = False


class EnforcementSummary(BaseModel):
    success: bool = True
    processed: int
    flagged: int
    suspended: int
    reset: int
    ran_at: datetime


class AffiliateStats(BaseModel):
    affiliate_id: int
    link_id: Optional[int] = None
    clicks: int
    conversions: int
    pending: Money
    payable: Money
    paid: Money


class MerchantStandingRead(BaseModel):
    id: int
    name: str
    standing: str
    unpaid_affiliate_total: Money
    unpaid_platform_total: Money
    max_days_late: int
    late_payout_flag: bool
    is_suspended: bool
    suspended_at: Optional[datetime]
    is_live: bool

    model_config = ConfigDict(from_attributes=True)

    @field_validator("standing", mode="before")
    def standing_value(cls, value: Any) -> Any:
        return getattr(value, "value", value)


class LiftSuspensionPayload(BaseModel):
    actor: Optional[str] = Field(None, max_length=100)


class ReferralPaymentPayload(BaseModel):
    customer_id: str = Field(..., min_length=1, max_length=255)
    payment_reference: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., ge=0)
    currency: str = Field("usd", min_length=1, max_length=10)


class ReferralCommissionResult(BaseModel):
    success: bool = True
    recorded: bool
    reason: Optional[str] = None
    commission_id: Optional[int] = None
    referrer_user_id: Optional[int] = None
    commission_amount: Optional[Money] = None
    currency: Optional[str] = None
    duplicate: bool = False
