import pytest
from sqlalchemy import select

from app.models.audit_log import AuditLog
from app.models.billing import BillPayment, PaymentMethod, PaymentStatus
from app.schemas.billing import PaymentSplitIn
from app.services.errors import (
    AuthenticationRequiredError,
    BillingConflictError,
    NotFoundError,
    PaymentMismatchError,
)
from app.services.payments import (
    ReplacingRecorder,
    SupersedingRecorder,
    derive_payment_status,
    get_payment_recorder,
    list_payment_history,
    record_payment_splits,
    summarize_method,
)


def _split(method: str, amount: int, reference: str | None = None) -> PaymentSplitIn:
    return PaymentSplitIn(method=PaymentMethod(method), amount_paise=amount, reference=reference)


def _rows(db_session, bill_id: int) -> list[BillPayment]:
    return list(
        db_session.scalars(
            select(BillPayment).where(BillPayment.bill_id == bill_id).order_by(BillPayment.id)
        )
    )


@pytest.mark.parametrize(
    ("total", "paid", "expected"),
    [
        (84000, 0, PaymentStatus.pending),
        (84000, 40000, PaymentStatus.partial),
        (84000, 84000, PaymentStatus.paid),
        (84000, 90000, PaymentStatus.paid),
        (0, 0, PaymentStatus.pending),
    ],
)
def test_derive_payment_status(total: int, paid: int, expected: PaymentStatus):
    assert derive_payment_status(total, paid) == expected


def test_summarize_method():
    assert summarize_method([]) is None
    assert summarize_method([_split("upi", 100)]) == "upi"
    assert summarize_method([_split("cash", 100), _split("card", 100)]) == "split"


def test_single_cash_payment_settles_bill(db_session, cashier, make_bill):
    bill = make_bill()
    record_payment_splits(db_session, bill.id, [_split("cash", 84000)], cashier)
    db_session.commit()

    assert bill.amount_paid_paise == 84000
    assert bill.balance_due_paise == 0
    assert bill.payment_status == PaymentStatus.paid
    assert bill.payment_method == "cash"
    rows = _rows(db_session, bill.id)
    assert [(row.method, row.amount_paise) for row in rows] == [(PaymentMethod.cash, 84000)]
    assert rows[0].received_by_user_id == cashier.id


def test_split_payment_records_every_method(db_session, cashier, make_bill):
    bill = make_bill()
    splits = [_split("cash", 50000), _split("upi", 30000, "UPI-778812"), _split("card", 4000)]
    record_payment_splits(db_session, bill.id, splits, cashier)
    db_session.commit()

    assert bill.payment_method == "split"
    assert sum(row.amount_paise for row in bill.payments) == bill.total_paise
    assert [row.reference for row in bill.payments] == [None, "UPI-778812", None]


def test_mismatched_splits_are_rejected_without_changes(db_session, cashier, make_bill):
    bill = make_bill()
    with pytest.raises(PaymentMismatchError) as exc_info:
        record_payment_splits(
            db_session, bill.id, [_split("cash", 50000), _split("card", 30000)], cashier
        )
    assert exc_info.value.submitted_paise == 80000
    assert exc_info.value.total_paise == 84000
    assert "must equal the total bill amount" in str(exc_info.value)
    db_session.rollback()

    assert bill.amount_paid_paise == 0
    assert bill.payment_status == PaymentStatus.pending
    assert _rows(db_session, bill.id) == []


def test_one_paisa_rounding_difference_is_accepted(db_session, cashier, make_bill):
    bill = make_bill()
    record_payment_splits(db_session, bill.id, [_split("cash", 83999)], cashier)
    assert bill.amount_paid_paise == 83999
    assert bill.balance_due_paise == 1
    assert bill.payment_status == PaymentStatus.partial


def test_zero_amount_splits_are_dropped(db_session, cashier, make_bill):
    bill = make_bill()
    record_payment_splits(
        db_session, bill.id, [_split("cash", 84000), _split("card", 0)], cashier
    )
    db_session.commit()
    assert [row.method for row in _rows(db_session, bill.id)] == [PaymentMethod.cash]
    assert bill.payment_method == "cash"


def test_replace_mode_discards_previous_breakdown(db_session, cashier, make_bill):
    bill = make_bill()
    record_payment_splits(db_session, bill.id, [_split("cash", 84000)], cashier)
    db_session.commit()
    record_payment_splits(
        db_session,
        bill.id,
        [_split("card", 44000), _split("gpay", 40000)],
        cashier,
        recorder=ReplacingRecorder(),
    )
    db_session.commit()

    rows = _rows(db_session, bill.id)
    assert [(row.method, row.amount_paise) for row in rows] == [
        (PaymentMethod.card, 44000),
        (PaymentMethod.gpay, 40000),
    ]
    assert bill.payment_method == "split"


def test_supersede_mode_keeps_history(db_session, cashier, make_bill):
    bill = make_bill()
    recorder = SupersedingRecorder()
    record_payment_splits(db_session, bill.id, [_split("cash", 84000)], cashier, recorder=recorder)
    db_session.commit()
    record_payment_splits(
        db_session, bill.id, [_split("insurance", 84000)], cashier, recorder=recorder
    )
    db_session.commit()

    history = list_payment_history(db_session, bill.id)
    assert [row.method for row in history] == [PaymentMethod.cash, PaymentMethod.insurance]
    assert history[0].deleted_at is not None
    assert history[0].deleted_by_user_id == cashier.id
    assert history[1].deleted_at is None
    assert [row.method for row in bill.payments] == [PaymentMethod.insurance]
    assert bill.amount_paid_paise == 84000


def test_recorder_follows_configured_mode(monkeypatch):
    from app.services import payments

    monkeypatch.setattr(payments.settings, "payment_history_mode", "supersede")
    assert isinstance(get_payment_recorder(), SupersedingRecorder)
    assert isinstance(get_payment_recorder("replace"), ReplacingRecorder)
    with pytest.raises(ValueError):
        get_payment_recorder("archive")


def test_actor_is_required(db_session, make_bill):
    bill = make_bill()
    with pytest.raises(AuthenticationRequiredError):
        record_payment_splits(db_session, bill.id, [_split("cash", 84000)], None)


def test_unknown_bill(db_session, cashier):
    with pytest.raises(NotFoundError):
        record_payment_splits(db_session, 4040, [_split("cash", 100)], cashier)


def test_cancelled_bill_rejects_payments(db_session, cashier, make_bill):
    bill = make_bill()
    bill.payment_status = PaymentStatus.cancelled
    db_session.commit()
    with pytest.raises(BillingConflictError):
        record_payment_splits(db_session, bill.id, [_split("cash", 84000)], cashier)


def test_payment_is_audited_and_paid_transition_logged(db_session, cashier, make_bill):
    bill = make_bill()
    record_payment_splits(
        db_session, bill.id, [_split("cash", 84000)], cashier, request_id="req-991"
    )
    db_session.commit()

    entries = list(
        db_session.scalars(
            select(AuditLog)
            .where(AuditLog.entity_type == "bill", AuditLog.entity_id == str(bill.id))
            .order_by(AuditLog.id)
        )
    )
    assert [entry.action for entry in entries] == ["bill.created", "payment.recorded", "bill.paid"]
    recorded = entries[1]
    assert recorded.request_id == "req-991"
    assert recorded.before_json["payment_status"] == "pending"
    assert recorded.after_json["payment_status"] == "paid"
    assert recorded.after_json["splits"] == [
        {"method": "cash", "amount_paise": 84000, "reference": None}
    ]
    assert recorded.after_json["history_mode"] == "replace"


def test_replace_after_supersede_keeps_retired_rows(db_session, cashier, make_bill):
    bill = make_bill()
    record_payment_splits(
        db_session, bill.id, [_split("cash", 84000)], cashier, recorder=SupersedingRecorder()
    )
    db_session.commit()
    record_payment_splits(
        db_session, bill.id, [_split("insurance", 84000)], cashier, recorder=SupersedingRecorder()
    )
    db_session.commit()
    record_payment_splits(
        db_session, bill.id, [_split("card", 84000)], cashier, recorder=ReplacingRecorder()
    )
    db_session.commit()

    history = list_payment_history(db_session, bill.id)
    assert [(row.method, row.deleted_at is None) for row in history] == [
        (PaymentMethod.cash, False),
        (PaymentMethod.card, True),
    ]
    assert [row.method for row in bill.payments] == [PaymentMethod.card]


def test_concurrent_bill_change_is_a_conflict(
    db_session, cashier, make_bill, concurrent_edit_recorder
):
    bill = make_bill()
    with pytest.raises(BillingConflictError, match="changed by another request"):
        record_payment_splits(
            db_session,
            bill.id,
            [_split("cash", 84000)],
            cashier,
            recorder=concurrent_edit_recorder,
        )
    db_session.rollback()

    assert bill.amount_paid_paise == 0
    assert bill.balance_due_paise == 84000
    assert bill.payment_status == PaymentStatus.pending
    assert bill.payment_method is None
    assert _rows(db_session, bill.id) == []
