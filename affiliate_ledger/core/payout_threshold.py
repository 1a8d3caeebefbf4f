"""Minimum payout threshold rule for new ledger entries."""
from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal

from affiliate_ledger.core.commission import quantize_money, to_decimal
from affiliate_ledger.core.formatting import format_money

MINIMUM_PAYOUT_THRESHOLD = to_decimal(os.getenv("MINIMUM_PAYOUT_THRESHOLD", "50"))


@dataclass(frozen=True)
class ThresholdDecision:
    status: str
    outstanding_before: Decimal
    outstanding_after: Decimal
    threshold: Decimal

    @property
    def is_payable(self) -> bool:
        return self.status == "payable"

    @property
    def remaining(self) -> Decimal:
        return max(Decimal("0"), quantize_money(self.threshold - self.outstanding_after))

    def message(self) -> str:
        threshold_label = format_money(self.threshold)
        if self.is_payable:
            return "Payable - commission meets minimum payout threshold"
        return (
            f"Pending. Earn ${format_money(self.remaining)} more to reach "
            f"${threshold_label} minimum payout threshold."
        )


def evaluate_threshold(
    outstanding_total: Decimal,
    new_commission: Decimal,
    threshold: Decimal = MINIMUM_PAYOUT_THRESHOLD,
) -> ThresholdDecision:
    """Decide the status of a new entry from the affiliate's unpaid balance.

    ``outstanding_total`` is the sum of the affiliate's ``pending`` and
    ``payable`` entries before this one. Only the new entry is affected:
    earlier pending entries stay pending even when this one tips the balance.
    """

    before = to_decimal(outstanding_total)
    after = before + to_decimal(new_commission)
    status = "payable" if after >= threshold else "pending"
    return ThresholdDecision(
        status=status,
        outstanding_before=before,
        outstanding_after=after,
        threshold=threshold,
    )
