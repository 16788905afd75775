from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass

from sqlalchemy import func, select

from app.db.session import SessionLocal
from app.models.billing import Bill, BillPayment, PaymentStatus
from app.services.payments import apply_paid_amount, summarize_method

logger = logging.getLogger("hms_billing.backfill")


@dataclass
class BackfillCounts:
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0


def active_paid_amount(session, bill_id: int) -> int:
    return int(
        session.scalar(
            select(func.coalesce(func.sum(BillPayment.amount_paise), 0)).where(
                BillPayment.bill_id == bill_id, BillPayment.deleted_at.is_(None)
            )
        )
        or 0
    )


def backfill_bills(session, apply: bool) -> BackfillCounts:
    """Recompute paid, balance, status and method of every bill from its active splits."""
    counts = BackfillCounts()
    for bill in session.scalars(select(Bill).order_by(Bill.id)).unique():
        if bill.payment_status == PaymentStatus.cancelled:
            counts.skipped += 1
            continue
        before = (
            bill.amount_paid_paise,
            bill.balance_due_paise,
            bill.payment_status,
            bill.payment_method,
        )
        paid = active_paid_amount(session, bill.id)
        if paid > bill.total_paise + 1:
            logger.warning(
                "Bill %s: active splits %s exceed total %s; left unchanged",
                bill.bill_number,
                paid,
                bill.total_paise,
            )
            counts.skipped += 1
            continue
        apply_paid_amount(bill, paid)
        bill.payment_method = summarize_method(list(bill.payments))
        after = (
            bill.amount_paid_paise,
            bill.balance_due_paise,
            bill.payment_status,
            bill.payment_method,
        )
        if after == before:
            counts.unchanged += 1
            continue
        counts.updated += 1
        print(
            f"{bill.bill_number}: paid {before[0]} -> {after[0]}, "
            f"balance {before[1]} -> {after[1]}, status {before[2].value} -> {after[2].value}"
        )
    if not apply:
        session.rollback()
    return counts


def main() -> int:
    parser = argparse.ArgumentParser(description="Recompute bill balances from payment splits.")
    parser.add_argument("--apply", action="store_true", help="Write changes to the database.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview changes without writing (default).",
    )
    args = parser.parse_args()
    apply = args.apply and not args.dry_run

    session = SessionLocal()
    try:
        counts = backfill_bills(session, apply)
        if apply:
            session.commit()
        print("Bill balance backfill")
        print(f"Bills: updated={counts.updated} unchanged={counts.unchanged} skipped={counts.skipped}")
        if not apply:
            print("Dry run only. Use --apply to persist changes.")
        return 0
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    raise SystemExit(main())
