"""Helpers for consistent user-facing money and date formatting."""
from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil import parser as date_parser

DISPLAY_DATETIME_FORMAT = "%m/%d/%Y %I:%M %p"


def format_money(value: Any) -> str:
    """Format numeric values with thousand separators and two decimals."""

    if value in (None, ""):
        decimal_value = Decimal("0")
    else:
        try:
            decimal_value = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError):
            return str(value)

    decimal_value = decimal_value.quantize(Decimal("0.01"))
    return f"{decimal_value:,.2f}"


def parse_datetime(value: Any) -> datetime | None:
    """Parse ISO-ish timestamps sent by callers; naive results are returned as-is.

    Aware timestamps are converted to naive local time so they compare with the
    naive ``datetime.now()`` values stored elsewhere.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime.combine(value, time.min)
    else:
        try:
            parsed = date_parser.isoparse(str(value).strip())
        except (ValueError, OverflowError):
            try:
                parsed = date_parser.parse(str(value))
            except (ValueError, TypeError, OverflowError) as exc:
                raise ValueError(f"Unrecognized datetime '{value}'.") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def format_display_datetime(value: Any) -> str:
    """Format a value as mm/dd/yyyy hh:mm AM/PM or return an empty string."""
    if value in (None, ""):
        return ""
    try:
        coerced = parse_datetime(value)
    except ValueError:
        return str(value)
    return coerced.strftime(DISPLAY_DATETIME_FORMAT) if coerced else ""


__all__ = [
    "format_display_datetime",
    "format_money",
    "parse_datetime",
]
