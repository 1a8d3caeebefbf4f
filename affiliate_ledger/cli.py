"""Command line entry point for scheduled and administrative ledger tasks.

Cron runs ``affiliate-ledger enforce`` on a fixed cadence; operators use
``lift-suspension`` once a delinquent merchant has settled with affiliates.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Optional, Sequence

from affiliate_ledger.core.formatting import format_display_datetime, format_money
from affiliate_ledger.database import SessionLocal, init_db
from affiliate_ledger.errors import LedgerError
from affiliate_ledger.services import EnforcementService


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(description="Affiliate commission ledger maintenance.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    enforce = subparsers.add_parser("enforce", help="Run late-payment enforcement once.")
    enforce.add_argument("--json", action="store_true", help="Print the run summary as JSON.")

    lift = subparsers.add_parser("lift-suspension", help="Lift a merchant suspension.")
    lift.add_argument("merchant_id", type=int, help="Merchant id to reinstate.")
    lift.add_argument("--actor", default=os.getenv("USER"), help="Name recorded in the audit log.")

    subparsers.add_parser("init-db", help="Create database tables.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point."""

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = parse_args(argv)
    init_db()
    if args.command == "init-db":
        print("Database ready.")
        return

    session = SessionLocal()
    try:
        service = EnforcementService(session)
        if args.command == "enforce":
            summary = service.enforce_late_payments()
            if args.json:
                print(summary.model_dump_json())
            else:
                print(
                    f"Processed {summary.processed} merchants: {summary.flagged} flagged, "
                    f"{summary.suspended} suspended, {summary.reset} reset."
                )
        elif args.command == "lift-suspension":
            merchant = service.lift_suspension(args.merchant_id, actor=args.actor)
            print(
                f"Merchant {merchant.id} ({merchant.name}) reinstated at "
                f"{format_display_datetime(merchant.updated_at)}; "
                f"outstanding affiliate commissions {format_money(merchant.unpaid_affiliate_total)}."
            )
    except LedgerError as exc:
        raise SystemExit(json.dumps(exc.to_payload())) from exc
    finally:
        session.close()


if __name__ == "__main__":
    main()
