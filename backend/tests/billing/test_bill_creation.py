import logging
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.models.audit_log import AuditLog
from app.models.billing import Bill, BillItem, BillType, PaymentStatus
from app.schemas.billing import BillCreate, BillItemCreate
from app.services import bills as bill_service
from app.services.errors import (
    BillingConflictError,
    BillingValidationError,
    LineItemsWriteError,
    NotFoundError,
)


def _payload(patient_id: int, **fields) -> BillCreate:
    fields.setdefault(
        "items",
        [
            BillItemCreate(description="Consultation", quantity=1, unit_amount_paise=50000),
            BillItemCreate(
                description="Lab Test", quantity=1, unit_amount_paise=30000, category="lab"
            ),
        ],
    )
    return BillCreate(patient_id=patient_id, **fields)


def _bill_count(db_session) -> int:
    return db_session.scalar(select(func.count(Bill.id)))


def test_create_bill_persists_header_and_items(db_session, cashier, patient):
    bill = bill_service.create_bill(db_session, _payload(patient.id), cashier)
    db_session.commit()

    assert bill.bill_number.startswith("OP")
    assert bill.subtotal_paise == 80000
    assert bill.tax_paise == 4000
    assert bill.total_paise == 84000
    assert bill.amount_paid_paise == 0
    assert bill.balance_due_paise == 84000
    assert bill.payment_status == PaymentStatus.pending
    assert bill.created_by_user_id == cashier.id
    assert [item.description for item in bill.items] == ["Consultation", "Lab Test"]
    assert [item.line_type_code for item in bill.items] == ["service", "lab"]
    assert all(item.total_paise == item.quantity * item.unit_amount_paise for item in bill.items)


def test_bill_type_does_not_change_the_prefix(db_session, cashier, patient):
    bill = bill_service.create_bill(
        db_session, _payload(patient.id, bill_type=BillType.radiology), cashier
    )
    assert bill.bill_type == BillType.radiology
    assert bill.bill_number.startswith("OP")


def test_category_aliases_and_unknown_categories(db_session, cashier, patient):
    items = [
        BillItemCreate(description="Ward", unit_amount_paise=150000, category="accommodation"),
        BillItemCreate(description="Paracetamol", quantity=10, unit_amount_paise=200, category="Medicine"),
        BillItemCreate(description="Misc", unit_amount_paise=100, category="stationery"),
    ]
    bill = bill_service.create_bill(db_session, _payload(patient.id, items=items), cashier)
    db_session.commit()
    assert [item.line_type_code for item in bill.items] == ["stay", "medicine", "service"]


def test_declared_total_must_match_line_items(db_session, cashier, patient):
    with pytest.raises(BillingValidationError):
        bill_service.create_bill(
            db_session, _payload(patient.id, total_paise=90000), cashier
        )
    db_session.rollback()
    assert _bill_count(db_session) == 0


def test_declared_total_within_one_paisa_is_accepted(db_session, cashier, patient):
    bill = bill_service.create_bill(
        db_session,
        _payload(patient.id, subtotal_paise=80000, total_paise=84001),
        cashier,
    )
    assert bill.total_paise == 84000


def test_explicit_tax_percent(db_session, cashier, patient):
    bill = bill_service.create_bill(
        db_session, _payload(patient.id, tax_percent=Decimal("12"), discount_paise=1000), cashier
    )
    assert bill.tax_paise == 9600
    assert bill.total_paise == 80000 - 1000 + 9600


def test_unknown_patient(db_session, cashier, patient):
    with pytest.raises(NotFoundError):
        bill_service.create_bill(db_session, _payload(patient.id + 100), cashier)


def test_line_item_failure_removes_header(db_session, cashier, patient, monkeypatch, caplog):
    def _reject(*_args, **_kwargs):
        raise IntegrityError(
            "INSERT INTO billing_item", {}, Exception("null value in column qty")
        )

    monkeypatch.setattr(bill_service, "_insert_line_items", _reject)
    with caplog.at_level(logging.ERROR, logger="hms_billing.bills"):
        with pytest.raises(LineItemsWriteError) as exc_info:
            bill_service.create_bill(db_session, _payload(patient.id), cashier)

    error = exc_info.value
    assert error.stage == "line_items"
    assert error.bill_number.startswith("OP")
    assert "null value in column qty" in error.diagnostic
    assert "removing header" in caplog.text
    # The compensating delete is already flushed, before any rollback.
    assert _bill_count(db_session) == 0
    db_session.rollback()
    assert _bill_count(db_session) == 0
    assert db_session.scalar(select(func.count(BillItem.id))) == 0


def test_bill_number_conflict_is_retried(db_session, cashier, patient, make_bill, monkeypatch):
    existing = make_bill()
    numbers = iter([existing.bill_number, "OP2610-0999"])
    monkeypatch.setattr(
        bill_service, "generate_bill_number", lambda db, prefix=None: next(numbers)
    )

    bill = bill_service.create_bill(db_session, _payload(patient.id), cashier)
    db_session.commit()

    assert bill.bill_number == "OP2610-0999"
    assert _bill_count(db_session) == 2
    assert len(bill.items) == 2


def test_bill_number_conflict_gives_up_after_max_attempts(
    db_session, cashier, patient, make_bill, monkeypatch
):
    existing = make_bill()
    calls = []

    def _always_taken(db, prefix=None):
        calls.append(prefix)
        return existing.bill_number

    monkeypatch.setattr(bill_service, "generate_bill_number", _always_taken)
    with pytest.raises(BillingConflictError):
        bill_service.create_bill(db_session, _payload(patient.id), cashier)
    assert len(calls) == bill_service.settings.bill_number_max_attempts


def test_create_bill_writes_audit_entry(db_session, cashier, patient):
    bill = bill_service.create_bill(db_session, _payload(patient.id), cashier)
    db_session.commit()
    entry = db_session.scalar(
        select(AuditLog).where(AuditLog.entity_type == "bill", AuditLog.entity_id == str(bill.id))
    )
    assert entry.action == "bill.created"
    assert entry.actor_user_id == cashier.id
    assert entry.after_json["bill_number"] == bill.bill_number
    assert entry.after_json["payment_status"] == "pending"
