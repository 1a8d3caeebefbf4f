"""Late-payment classification for merchants with outstanding commissions.

Pure helpers: the enforcement job loads ledger rows, hands them to
``summarize_exposures`` and applies ``next_standing`` to each merchant.
Nothing here touches the database.
"""
from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable

import pandas as pd

LATE_FLAG_DAYS = int(os.getenv("LATE_FLAG_DAYS", "45"))
SUSPEND_DAYS = int(os.getenv("SUSPEND_DAYS", "70"))


class MerchantStanding(str, enum.Enum):
    CLEAR = "clear"
    FLAGGED = "flagged"
    SUSPENDED = "suspended"


def standing_for(*, is_suspended: bool, late_payout_flag: bool) -> MerchantStanding:
    if is_suspended:
        return MerchantStanding.SUSPENDED
    if late_payout_flag:
        return MerchantStanding.FLAGGED
    return MerchantStanding.CLEAR


def days_late(payable_at: datetime, now: datetime) -> int:
    """Whole days elapsed since an entry became payable (never negative)."""

    return max(0, (now - payable_at) // timedelta(days=1))


@dataclass(frozen=True)
class OutstandingEntry:
    merchant_id: int
    payable_at: datetime
    affiliate_amount: Decimal
    platform_amount: Decimal


@dataclass(frozen=True)
class MerchantExposure:
    merchant_id: int
    max_days_late: int
    unpaid_affiliate_total: Decimal
    unpaid_platform_total: Decimal

    @property
    def should_flag(self) -> bool:
        return self.max_days_late >= LATE_FLAG_DAYS

    @property
    def should_suspend(self) -> bool:
        return self.max_days_late >= SUSPEND_DAYS


def _to_cents(value: Decimal) -> int:
    return int((Decimal(value) * 100).to_integral_value())


def _from_cents(value) -> Decimal:
    return Decimal(int(value)).scaleb(-2)


def summarize_exposures(entries: Iterable[OutstandingEntry], now: datetime) -> dict[int, MerchantExposure]:
    """Group outstanding entries per merchant: oldest age and unpaid totals."""

    rows = [
        {
            "merchant_id": entry.merchant_id,
            "days_late": days_late(entry.payable_at, now),
            "affiliate_cents": _to_cents(entry.affiliate_amount),
            "platform_cents": _to_cents(entry.platform_amount),
        }
        for entry in entries
    ]
    if not rows:
        return {}

    frame = pd.DataFrame(rows)
    grouped = frame.groupby("merchant_id").agg(
        max_days_late=("days_late", "max"),
        affiliate_cents=("affiliate_cents", "sum"),
        platform_cents=("platform_cents", "sum"),
    )

    exposures: dict[int, MerchantExposure] = {}
    for merchant_id, row in grouped.iterrows():
        exposures[int(merchant_id)] = MerchantExposure(
            merchant_id=int(merchant_id),
            max_days_late=int(row["max_days_late"]),
            unpaid_affiliate_total=_from_cents(row["affiliate_cents"]),
            unpaid_platform_total=_from_cents(row["platform_cents"]),
        )
    return exposures


def next_standing(current: MerchantStanding, exposure: MerchantExposure | None) -> MerchantStanding:
    """Transition a merchant given its current exposure.

    Suspension is sticky: only an administrative lift moves a suspended
    merchant back to clear.
    """

    if current is MerchantStanding.SUSPENDED:
        return MerchantStanding.SUSPENDED
    if exposure is None:
        return MerchantStanding.CLEAR
    if exposure.should_suspend:
        return MerchantStanding.SUSPENDED
    if exposure.should_flag:
        return MerchantStanding.FLAGGED
    return MerchantStanding.CLEAR


__all__ = [
    "LATE_FLAG_DAYS",
    "MerchantExposure",
    "MerchantStanding",
    "OutstandingEntry",
    "SUSPEND_DAYS",
    "days_late",
    "next_standing",
    "standing_for",
    "summarize_exposures",
]
