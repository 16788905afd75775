from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.settings import settings
from app.models.billing import Bill, BillItem, PaymentMethod, PaymentStatus
from app.models.sales_return import RestockStatus, SalesReturn, SalesReturnItem
from app.models.user import User
from app.schemas.sales_return import SalesReturnCreate, SalesReturnLineIn
from app.services.audit import log_event, snapshot_model
from app.services.bills import get_bill
from app.services.errors import (
    AuthenticationRequiredError,
    BillingConflictError,
    BillingValidationError,
    NotFoundError,
    ReturnQuantityError,
)
from app.services.money import format_paise
from app.services.numbering import generate_return_number
from app.services.payments import (
    derive_payment_status,
    get_payment_recorder,
    summarize_method,
)

logger = logging.getLogger("hms_billing.returns")


@dataclass(frozen=True)
class ReturnImpact:
    return_amount_paise: int
    new_total_paise: int
    new_paid_paise: int
    new_balance_paise: int
    refund_due_paise: int


@dataclass(frozen=True)
class AdjustedSplit:
    method: PaymentMethod
    amount_paise: int
    reference: str | None
    note: str | None


def compute_return_impact(current_total: int, current_paid: int, return_amount: int) -> ReturnImpact:
    new_total = max(0, current_total - return_amount)
    refund_due = max(0, current_paid - new_total)
    new_paid = min(current_paid, new_total)
    new_balance = max(0, new_total - new_paid)
    return ReturnImpact(
        return_amount_paise=return_amount,
        new_total_paise=new_total,
        new_paid_paise=new_paid,
        new_balance_paise=new_balance,
        refund_due_paise=refund_due,
    )


def aggregate_reasons(reasons: Iterable) -> str:
    seen: list[str] = []
    for reason in reasons:
        value = getattr(reason, "value", reason)
        if value and value not in seen:
            seen.append(value)
    return ", ".join(seen)


def trim_splits(splits: Sequence, excess_paise: int, *, note: str) -> list[AdjustedSplit]:
    """Take ``excess_paise`` off a payment breakdown, latest split first."""
    remaining = excess_paise
    trimmed: list[AdjustedSplit] = []
    for split in reversed(list(splits)):
        amount = split.amount_paise
        taken = min(amount, remaining)
        remaining -= taken
        if amount - taken > 0:
            trimmed.append(
                AdjustedSplit(
                    method=split.method,
                    amount_paise=amount - taken,
                    reference=split.reference,
                    note=note if taken else split.note,
                )
            )
    trimmed.reverse()
    return trimmed


def returned_quantities(db: Session, bill_item_ids: Iterable[int]) -> dict[int, int]:
    ids = list(bill_item_ids)
    if not ids:
        return {}
    rows = db.execute(
        select(SalesReturnItem.bill_item_id, func.coalesce(func.sum(SalesReturnItem.quantity), 0))
        .where(SalesReturnItem.bill_item_id.in_(ids))
        .group_by(SalesReturnItem.bill_item_id)
    )
    return {item_id: int(quantity) for item_id, quantity in rows}


def _validated_lines(
    db: Session, bill: Bill, lines: Sequence[SalesReturnLineIn]
) -> list[tuple[BillItem, SalesReturnLineIn]]:
    items_by_id = {item.id: item for item in bill.items}
    seen: set[int] = set()
    for line in lines:
        if line.bill_item_id in seen:
            raise BillingValidationError(f"Line item {line.bill_item_id} is listed more than once")
        seen.add(line.bill_item_id)
        if line.bill_item_id not in items_by_id:
            raise BillingValidationError(
                f"Line item {line.bill_item_id} does not belong to bill {bill.bill_number}"
            )

    already = returned_quantities(db, seen)
    pairs: list[tuple[BillItem, SalesReturnLineIn]] = []
    for line in lines:
        item = items_by_id[line.bill_item_id]
        if line.quantity < 1:
            raise ReturnQuantityError(f"Return quantity for '{item.description}' must be at least 1")
        returned = already.get(item.id, 0)
        if line.quantity > item.quantity - returned:
            raise ReturnQuantityError(
                f"Cannot return {line.quantity} of '{item.description}': billed {item.quantity}, "
                f"already returned {returned}"
            )
        pairs.append((item, line))
    return pairs


def _status_after_return(bill: Bill, impact: ReturnImpact, current_paid: int) -> PaymentStatus:
    if bill.payment_status == PaymentStatus.overdue and impact.new_balance_paise > 0:
        return PaymentStatus.overdue
    if impact.new_total_paise == 0 and current_paid > 0:
        return PaymentStatus.paid
    return derive_payment_status(impact.new_total_paise, impact.new_paid_paise)


def _insert_return_header(
    db: Session,
    bill: Bill,
    payload: SalesReturnCreate,
    pairs: Sequence[tuple[BillItem, SalesReturnLineIn]],
    impact: ReturnImpact,
    actor: User,
    *,
    prefix: str | None,
) -> SalesReturn:
    attempts = settings.bill_number_max_attempts
    for attempt in range(1, attempts + 1):
        return_number = generate_return_number(db, prefix=prefix)
        sales_return = SalesReturn(
            return_number=return_number,
            bill_id=bill.id,
            return_date=payload.return_date or date.today(),
            refund_mode=payload.refund_mode,
            refund_amount_paise=impact.return_amount_paise,
            refund_due_paise=impact.refund_due_paise,
            total_quantity=sum(line.quantity for _, line in pairs),
            reason=aggregate_reasons(line.reason for _, line in pairs),
            remarks=payload.remarks,
            created_by_user_id=actor.id,
            updated_by_user_id=actor.id,
        )
        try:
            with db.begin_nested():
                db.add(sales_return)
                db.flush()
        except IntegrityError:
            taken = db.scalar(
                select(SalesReturn.id).where(SalesReturn.return_number == return_number)
            )
            if taken is None:
                raise
            logger.warning(
                "Return number %s already taken (attempt %s/%s)", return_number, attempt, attempts
            )
            continue
        return sales_return
    raise BillingConflictError(f"Could not allocate a unique return number after {attempts} attempts")


def create_sales_return(
    db: Session,
    bill_id: int,
    payload: SalesReturnCreate,
    actor: User | None,
    *,
    prefix: str | None = None,
    request_id: str | None = None,
    ip_address: str | None = None,
) -> tuple[SalesReturn, ReturnImpact]:
    """File a return against a bill and shrink the bill accordingly.

    The bill total drops by the value of the returned lines. Whatever the
    customer already paid above the new total is the refund due; the active
    payment breakdown is trimmed by that amount so it never exceeds the bill.
    Restocking itself belongs to the pharmacy inventory; lines flagged for
    restock are left ``pending`` for it, the rest are marked ``disposed``.
    """
    if actor is None:
        raise AuthenticationRequiredError("An authenticated user is required to file a return")

    bill = get_bill(db, bill_id, for_update=True)
    if bill.payment_status == PaymentStatus.cancelled:
        raise BillingConflictError(f"Bill {bill.bill_number} is cancelled")

    pairs = _validated_lines(db, bill, payload.items)
    return_amount = sum(item.unit_amount_paise * line.quantity for item, line in pairs)
    current_paid = bill.amount_paid_paise
    impact = compute_return_impact(bill.total_paise, current_paid, return_amount)
    before_data = snapshot_model(bill)

    sales_return = _insert_return_header(
        db, bill, payload, pairs, impact, actor, prefix=prefix
    )
    db.add_all(
        [
            SalesReturnItem(
                return_id=sales_return.id,
                bill_item_id=item.id,
                description=item.description,
                ref_id=item.ref_id,
                batch_number=item.batch_number,
                quantity=line.quantity,
                unit_amount_paise=item.unit_amount_paise,
                total_paise=item.unit_amount_paise * line.quantity,
                reason=line.reason,
                restock_status=RestockStatus.pending if line.restock else RestockStatus.disposed,
            )
            for item, line in pairs
        ]
    )
    db.flush()

    if impact.refund_due_paise > 0 and bill.payments:
        adjusted = trim_splits(
            bill.payments,
            impact.refund_due_paise,
            note=f"Adjusted for sales return {sales_return.return_number}",
        )
        get_payment_recorder().record(db, bill, adjusted, actor, datetime.now(timezone.utc))
        bill.payment_method = summarize_method(adjusted)

    bill.payment_status = _status_after_return(bill, impact, current_paid)
    bill.subtotal_paise = max(0, bill.subtotal_paise - return_amount)
    bill.total_paise = impact.new_total_paise
    bill.amount_paid_paise = impact.new_paid_paise
    bill.balance_due_paise = impact.new_balance_paise
    bill.updated_by_user_id = actor.id
    try:
        db.flush()
    except StaleDataError as exc:
        raise BillingConflictError(
            f"Bill {bill.bill_number} was changed by another request; reload and try again"
        ) from exc
    db.expire(sales_return, ["items"])

    after_data = snapshot_model(bill) or {}
    after_data["sales_return"] = sales_return.return_number
    after_data["refund_amount_paise"] = impact.return_amount_paise
    after_data["refund_due_paise"] = impact.refund_due_paise
    log_event(
        db,
        actor=actor,
        action="sales_return.created",
        entity_type="bill",
        entity_id=str(bill.id),
        before_data=before_data,
        after_data=after_data,
        request_id=request_id,
        ip_address=ip_address,
    )
    logger.info(
        "Sales return %s on bill %s: returned=%s refund_due=%s new_total=%s",
        sales_return.return_number,
        bill.bill_number,
        format_paise(impact.return_amount_paise),
        format_paise(impact.refund_due_paise),
        format_paise(impact.new_total_paise),
    )
    return sales_return, impact


def get_sales_return(db: Session, return_id: int) -> SalesReturn:
    sales_return = db.get(SalesReturn, return_id)
    if not sales_return:
        raise NotFoundError("Sales return not found")
    return sales_return


def list_sales_returns(db: Session, bill_id: int) -> list[SalesReturn]:
    bill = get_bill(db, bill_id)
    stmt = select(SalesReturn).where(SalesReturn.bill_id == bill.id).order_by(SalesReturn.id)
    return list(db.scalars(stmt).unique())
