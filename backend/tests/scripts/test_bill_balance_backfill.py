from datetime import datetime, timezone

from app.models.billing import BillPayment, PaymentMethod, PaymentStatus
from app.scripts.bill_balance_backfill import backfill_bills


def _drift(db_session, bill, cashier):
    db_session.add(
        BillPayment(
            bill_id=bill.id,
            amount_paise=84000,
            method=PaymentMethod.card,
            paid_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
            received_by_user_id=cashier.id,
        )
    )
    db_session.commit()


def test_dry_run_reports_without_writing(db_session, cashier, make_bill, capsys):
    bill = make_bill()
    _drift(db_session, bill, cashier)

    counts = backfill_bills(db_session, apply=False)

    assert counts.updated == 1
    assert bill.bill_number in capsys.readouterr().out
    assert bill.amount_paid_paise == 0
    assert bill.payment_status == PaymentStatus.pending


def test_apply_recomputes_from_active_splits(db_session, cashier, make_bill):
    bill = make_bill()
    untouched = make_bill()
    _drift(db_session, bill, cashier)

    counts = backfill_bills(db_session, apply=True)
    db_session.commit()

    assert (counts.updated, counts.unchanged, counts.skipped) == (1, 1, 0)
    assert bill.amount_paid_paise == 84000
    assert bill.balance_due_paise == 0
    assert bill.payment_status == PaymentStatus.paid
    assert bill.payment_method == "card"
    assert untouched.payment_status == PaymentStatus.pending


def test_cancelled_bills_are_skipped(db_session, cashier, make_bill):
    bill = make_bill()
    bill.payment_status = PaymentStatus.cancelled
    db_session.commit()
    _drift(db_session, bill, cashier)

    counts = backfill_bills(db_session, apply=True)
    assert counts.skipped == 1
    assert bill.amount_paid_paise == 0
