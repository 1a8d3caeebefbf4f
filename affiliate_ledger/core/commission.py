"""Commission arithmetic shared by conversion ingestion and platform referrals."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

COMMISSION_TYPES = ("percent", "flat")

MONEY_QUANT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """Coerce numbers and numeric strings to Decimal without float noise."""

    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, AttributeError) as exc:
        raise ValueError(f"Not a monetary value: {value!r}") from exc


def quantize_money(value: Any) -> Decimal:
    """Round to currency precision (cents, half-up)."""

    return to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def compute_commission(amount: Any, commission_type: str, commission_value: Any) -> Decimal:
    """Return the commission owed on ``amount`` under one set of terms.

    ``percent`` terms pay ``amount * value / 100``. ``flat`` terms pay
    ``value`` whatever the amount, so a zero-value lead still earns a flat fee.
    The result is not rounded; callers round once when persisting.
    """

    if commission_type not in COMMISSION_TYPES:
        raise ValueError(f"Unsupported commission type '{commission_type}'.")
    value = to_decimal(commission_value)
    if commission_type == "flat":
        return value
    return to_decimal(amount) * value / HUNDRED


@dataclass(frozen=True)
class CommissionTerms:
    commission_type: str
    commission_value: Decimal

    def apply(self, amount: Any) -> Decimal:
        return compute_commission(amount, self.commission_type, self.commission_value)


@dataclass(frozen=True)
class CommissionBreakdown:
    """Affiliate and platform commissions for a single conversion."""

    base_amount: Decimal
    affiliate: Decimal
    platform: Decimal

    @property
    def affiliate_rounded(self) -> Decimal:
        return quantize_money(self.affiliate)

    @property
    def platform_rounded(self) -> Decimal:
        return quantize_money(self.platform)


def compute_breakdown(
    amount: Any,
    affiliate_terms: CommissionTerms,
    platform_terms: CommissionTerms,
) -> CommissionBreakdown:
    base = to_decimal(amount)
    return CommissionBreakdown(
        base_amount=base,
        affiliate=affiliate_terms.apply(base),
        platform=platform_terms.apply(base),
    )


__all__ = [
    "COMMISSION_TYPES",
    "CommissionBreakdown",
    "CommissionTerms",
    "compute_breakdown",
    "compute_commission",
    "quantize_money",
    "to_decimal",
]
