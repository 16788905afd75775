from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.settings import settings
from app.models.billing import (
    SPLIT_PAYMENT_METHOD,
    Bill,
    BillPayment,
    PaymentMethod,
    PaymentStatus,
)
from app.models.user import User
from app.services.audit import log_event, snapshot_model
from app.services.bills import get_bill
from app.services.errors import (
    AuthenticationRequiredError,
    BillingConflictError,
    PaymentMismatchError,
)
from app.services.money import amounts_match, format_paise

logger = logging.getLogger("hms_billing.payments")


class PaymentSplit(Protocol):
    method: PaymentMethod
    amount_paise: int
    reference: str | None
    note: str | None


def derive_payment_status(total_paise: int, paid_paise: int) -> PaymentStatus:
    balance = max(0, total_paise - paid_paise)
    if paid_paise <= 0:
        return PaymentStatus.pending
    if balance <= 0:
        return PaymentStatus.paid
    return PaymentStatus.partial


def summarize_method(splits: Sequence[PaymentSplit]) -> str | None:
    if not splits:
        return None
    if len(splits) == 1:
        return PaymentMethod(splits[0].method).value
    return SPLIT_PAYMENT_METHOD


def apply_paid_amount(bill: Bill, paid_paise: int) -> None:
    bill.amount_paid_paise = paid_paise
    bill.balance_due_paise = max(0, bill.total_paise - paid_paise)
    if bill.payment_status != PaymentStatus.cancelled:
        bill.payment_status = derive_payment_status(bill.total_paise, paid_paise)


class PaymentSplitRecorder:
    """Writes the authoritative payment breakdown of a bill.

    Subclasses decide what happens to the breakdown being replaced.
    """

    mode = ""

    def retire_active(self, db: Session, bill: Bill, actor: User, now: datetime) -> None:
        raise NotImplementedError

    def record(
        self,
        db: Session,
        bill: Bill,
        splits: Sequence[PaymentSplit],
        actor: User,
        now: datetime,
    ) -> list[BillPayment]:
        self.retire_active(db, bill, actor, now)
        rows = [
            BillPayment(
                bill_id=bill.id,
                amount_paise=split.amount_paise,
                method=split.method,
                reference=split.reference,
                note=split.note,
                paid_at=now,
                received_by_user_id=actor.id,
            )
            for split in splits
        ]
        db.add_all(rows)
        db.flush()
        db.expire(bill, ["payments"])
        return rows


class ReplacingRecorder(PaymentSplitRecorder):
    mode = "replace"

    def retire_active(self, db: Session, bill: Bill, actor: User, now: datetime) -> None:
        db.execute(
            delete(BillPayment)
            .where(BillPayment.bill_id == bill.id, BillPayment.deleted_at.is_(None))
            .execution_options(synchronize_session="fetch")
        )


class SupersedingRecorder(PaymentSplitRecorder):
    mode = "supersede"

    def retire_active(self, db: Session, bill: Bill, actor: User, now: datetime) -> None:
        db.execute(
            update(BillPayment)
            .where(BillPayment.bill_id == bill.id, BillPayment.deleted_at.is_(None))
            .values(deleted_at=now, deleted_by_user_id=actor.id)
            .execution_options(synchronize_session="fetch")
        )


RECORDERS: dict[str, type[PaymentSplitRecorder]] = {
    ReplacingRecorder.mode: ReplacingRecorder,
    SupersedingRecorder.mode: SupersedingRecorder,
}


def get_payment_recorder(mode: str | None = None) -> PaymentSplitRecorder:
    mode = mode or settings.payment_history_mode
    try:
        return RECORDERS[mode]()
    except KeyError:
        raise ValueError(f"Unknown payment history mode: {mode}") from None


def _split_snapshot(splits: Sequence[PaymentSplit]) -> list[dict]:
    return [
        {
            "method": PaymentMethod(split.method).value,
            "amount_paise": split.amount_paise,
            "reference": split.reference,
        }
        for split in splits
    ]


def record_payment_splits(
    db: Session,
    bill_id: int,
    splits: Sequence[PaymentSplit],
    actor: User | None,
    *,
    recorder: PaymentSplitRecorder | None = None,
    request_id: str | None = None,
    ip_address: str | None = None,
) -> Bill:
    """Make ``splits`` the payment breakdown of the bill and settle its totals.

    The splits must add up to the bill total (within one paisa). Zero-amount
    splits are dropped. Nothing is committed here: removing the old breakdown,
    inserting the new one and updating the header all land in the caller's
    transaction, and the bill row is locked for the duration.
    """
    if actor is None:
        raise AuthenticationRequiredError("An authenticated user is required to record payments")

    bill = get_bill(db, bill_id, for_update=True)
    if bill.payment_status == PaymentStatus.cancelled:
        raise BillingConflictError(f"Bill {bill.bill_number} is cancelled")

    submitted = sum(split.amount_paise for split in splits)
    if not amounts_match(submitted, bill.total_paise):
        raise PaymentMismatchError(submitted_paise=submitted, total_paise=bill.total_paise)

    effective = [split for split in splits if split.amount_paise > 0]
    recorder = recorder or get_payment_recorder()
    before_data = snapshot_model(bill)
    before_status = bill.payment_status
    now = datetime.now(timezone.utc)

    recorder.record(db, bill, effective, actor, now)
    apply_paid_amount(bill, sum(split.amount_paise for split in effective))
    bill.payment_method = summarize_method(effective)
    bill.updated_by_user_id = actor.id
    try:
        db.flush()
    except StaleDataError as exc:
        raise BillingConflictError(
            f"Bill {bill.bill_number} was changed by another request; reload and try again"
        ) from exc

    after_data = snapshot_model(bill) or {}
    after_data["splits"] = _split_snapshot(effective)
    after_data["history_mode"] = recorder.mode
    log_event(
        db,
        actor=actor,
        action="payment.recorded",
        entity_type="bill",
        entity_id=str(bill.id),
        before_data=before_data,
        after_data=after_data,
        request_id=request_id,
        ip_address=ip_address,
    )
    if before_status != PaymentStatus.paid and bill.payment_status == PaymentStatus.paid:
        log_event(
            db,
            actor=actor,
            action="bill.paid",
            entity_type="bill",
            entity_id=str(bill.id),
            after_obj=bill,
            request_id=request_id,
            ip_address=ip_address,
        )
    logger.info(
        "Bill %s payments recorded: paid=%s balance=%s status=%s",
        bill.bill_number,
        format_paise(bill.amount_paid_paise),
        format_paise(bill.balance_due_paise),
        bill.payment_status.value,
    )
    return bill


def list_payment_history(db: Session, bill_id: int) -> list[BillPayment]:
    bill = get_bill(db, bill_id)
    stmt = select(BillPayment).where(BillPayment.bill_id == bill.id).order_by(BillPayment.id)
    return list(db.scalars(stmt).unique())
