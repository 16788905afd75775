from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Sequence

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.models.billing import Bill, BillItem, BillType, PaymentStatus
from app.models.patient import Patient
from app.models.user import User
from app.schemas.billing import BillCreate, BillItemCreate
from app.services.audit import log_event
from app.services.errors import (
    BillingConflictError,
    BillingValidationError,
    BillWriteError,
    LineItemsWriteError,
    NotFoundError,
)
from app.services.money import amounts_match, format_paise, percent_of
from app.services.numbering import generate_bill_number
from app.services.ref_codes import billing_line_type_ids, resolve_line_type_id

logger = logging.getLogger("hms_billing.bills")


@dataclass(frozen=True)
class BillTotals:
    subtotal_paise: int
    discount_paise: int
    tax_paise: int
    total_paise: int


def line_total(item: BillItemCreate) -> int:
    return item.quantity * item.unit_amount_paise


def compute_bill_totals(
    items: Sequence[BillItemCreate],
    *,
    discount_paise: int = 0,
    tax_paise: int | None = None,
    tax_percent: Decimal | None = None,
) -> BillTotals:
    subtotal = sum(line_total(item) for item in items)
    if tax_paise is None:
        percent = settings.default_tax_percent if tax_percent is None else tax_percent
        tax_paise = percent_of(subtotal, percent)
    total = subtotal - discount_paise + tax_paise
    if total < 0:
        raise BillingValidationError(
            f"Discount {format_paise(discount_paise)} exceeds the bill amount "
            f"{format_paise(subtotal + tax_paise)}"
        )
    return BillTotals(
        subtotal_paise=subtotal,
        discount_paise=discount_paise,
        tax_paise=tax_paise,
        total_paise=total,
    )


def _check_declared_totals(payload: BillCreate, totals: BillTotals) -> None:
    if payload.subtotal_paise is not None and not amounts_match(
        payload.subtotal_paise, totals.subtotal_paise
    ):
        raise BillingValidationError(
            f"Subtotal {format_paise(payload.subtotal_paise)} does not match the line items "
            f"({format_paise(totals.subtotal_paise)})"
        )
    if payload.total_paise is not None and not amounts_match(
        payload.total_paise, totals.total_paise
    ):
        raise BillingValidationError(
            f"Total {format_paise(payload.total_paise)} must equal subtotal - discount + tax "
            f"({format_paise(totals.total_paise)})"
        )


def _bill_number_taken(db: Session, bill_number: str) -> bool:
    return db.scalar(select(Bill.id).where(Bill.bill_number == bill_number)) is not None


def _insert_header(
    db: Session,
    payload: BillCreate,
    totals: BillTotals,
    actor: User,
    *,
    prefix: str | None,
) -> Bill:
    attempts = settings.bill_number_max_attempts
    for attempt in range(1, attempts + 1):
        bill_number = generate_bill_number(db, prefix=prefix)
        bill = Bill(
            bill_number=bill_number,
            patient_id=payload.patient_id,
            encounter_id=payload.encounter_id,
            appointment_id=payload.appointment_id,
            bed_allocation_id=payload.bed_allocation_id,
            bill_type=payload.bill_type,
            bill_date=payload.bill_date or date.today(),
            subtotal_paise=totals.subtotal_paise,
            discount_paise=totals.discount_paise,
            tax_paise=totals.tax_paise,
            total_paise=totals.total_paise,
            amount_paid_paise=0,
            balance_due_paise=totals.total_paise,
            payment_status=PaymentStatus.pending,
            notes=payload.notes,
            created_by_user_id=actor.id,
            updated_by_user_id=actor.id,
        )
        try:
            with db.begin_nested():
                db.add(bill)
                db.flush()
        except IntegrityError as exc:
            if not _bill_number_taken(db, bill_number):
                raise BillWriteError(
                    "Bill header could not be saved", bill_number=bill_number, cause=exc
                ) from exc
            logger.warning(
                "Bill number %s already taken (attempt %s/%s)", bill_number, attempt, attempts
            )
            continue
        except SQLAlchemyError as exc:
            raise BillWriteError(
                "Bill header could not be saved", bill_number=bill_number, cause=exc
            ) from exc
        return bill
    raise BillingConflictError(f"Could not allocate a unique bill number after {attempts} attempts")


def _insert_line_items(
    db: Session, bill: Bill, items: Sequence[BillItemCreate], line_type_ids: dict[str, int]
) -> list[BillItem]:
    rows = [
        BillItem(
            bill_id=bill.id,
            line_type_id=resolve_line_type_id(line_type_ids, item.category),
            ref_id=item.ref_id,
            description=item.description.strip(),
            quantity=item.quantity,
            unit_amount_paise=item.unit_amount_paise,
            total_paise=line_total(item),
            batch_number=item.batch_number,
        )
        for item in items
    ]
    db.add_all(rows)
    db.flush()
    return rows


def create_bill(
    db: Session,
    payload: BillCreate,
    actor: User,
    *,
    prefix: str | None = None,
    request_id: str | None = None,
    ip_address: str | None = None,
) -> Bill:
    """Create a bill header and its line items as one unit.

    The header goes in first so the line items can reference it. If the line
    items are rejected the header is deleted again and ``LineItemsWriteError``
    is raised; a header failure raises ``BillWriteError``. The caller owns the
    transaction and must not commit after either error.
    """
    patient = db.get(Patient, payload.patient_id)
    if not patient or patient.deleted_at is not None:
        raise NotFoundError("Patient not found")

    totals = compute_bill_totals(
        payload.items,
        discount_paise=payload.discount_paise,
        tax_paise=payload.tax_paise,
        tax_percent=payload.tax_percent,
    )
    _check_declared_totals(payload, totals)
    line_type_ids = billing_line_type_ids(db)

    bill = _insert_header(db, payload, totals, actor, prefix=prefix)
    bill_number = bill.bill_number
    try:
        with db.begin_nested():
            _insert_line_items(db, bill, payload.items, line_type_ids)
    except SQLAlchemyError as exc:
        logger.error("Line items for bill %s failed, removing header: %s", bill_number, exc)
        db.delete(bill)
        db.flush()
        raise LineItemsWriteError(
            f"Bill line items could not be saved; bill {bill_number} was not created",
            bill_number=bill_number,
            cause=exc,
        ) from exc
    db.expire(bill, ["items"])

    log_event(
        db,
        actor=actor,
        action="bill.created",
        entity_type="bill",
        entity_id=str(bill.id),
        after_obj=bill,
        request_id=request_id,
        ip_address=ip_address,
    )
    logger.info(
        "Bill %s created for patient %s total=%s",
        bill_number,
        bill.patient_id,
        format_paise(bill.total_paise),
    )
    return bill


def get_bill(db: Session, bill_id: int, *, for_update: bool = False) -> Bill:
    stmt = select(Bill).where(Bill.id == bill_id)
    if for_update:
        stmt = stmt.with_for_update(of=Bill).execution_options(populate_existing=True)
    bill = db.scalars(stmt).unique().one_or_none()
    if not bill:
        raise NotFoundError("Bill not found")
    return bill


def list_bills(
    db: Session,
    *,
    patient_id: int | None = None,
    bill_type: BillType | None = None,
    status: PaymentStatus | None = None,
    q: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Bill]:
    stmt = select(Bill).order_by(Bill.bill_date.desc(), Bill.id.desc())
    if patient_id is not None:
        stmt = stmt.where(Bill.patient_id == patient_id)
    if bill_type is not None:
        stmt = stmt.where(Bill.bill_type == bill_type)
    if status is not None:
        stmt = stmt.where(Bill.payment_status == status)
    if q and q.strip():
        term = q.strip()
        stmt = stmt.join(Patient, Patient.id == Bill.patient_id).where(
            or_(
                Bill.bill_number.ilike(f"%{term}%"),
                Patient.uhid.ilike(f"%{term}%"),
                Patient.phone.ilike(f"%{term}%"),
            )
        )
    if date_from:
        stmt = stmt.where(Bill.bill_date >= date_from)
    if date_to:
        stmt = stmt.where(Bill.bill_date <= date_to)
    stmt = stmt.limit(limit).offset(offset)
    return list(db.scalars(stmt).unique())
