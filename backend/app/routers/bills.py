from datetime import date

from fastapi import APIRouter, Depends, Header, Query, Request, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import client_ip, get_current_user, http_error
from app.models.billing import BillType, PaymentStatus
from app.models.user import User
from app.schemas.billing import (
    BillCreate,
    BillOut,
    BillSummaryOut,
    PaymentSplitOut,
    PaymentSplitsIn,
)
from app.services.bills import create_bill, get_bill, list_bills
from app.services.errors import BillingError
from app.services.payments import list_payment_history, record_payment_splits

router = APIRouter(prefix="/bills", tags=["bills"])


@router.post("", response_model=BillOut, status_code=status.HTTP_201_CREATED)
def create_bill_endpoint(
    payload: BillCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    request_id: str | None = Header(default=None),
):
    try:
        bill = create_bill(
            db, payload, user, request_id=request_id, ip_address=client_ip(request)
        )
    except BillingError as exc:
        db.rollback()
        raise http_error(exc) from exc
    db.commit()
    db.refresh(bill)
    return bill


@router.get("", response_model=list[BillSummaryOut])
def list_bills_endpoint(
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
    patient_id: int | None = Query(default=None),
    payment_status: PaymentStatus | None = Query(default=None),
    bill_type: BillType | None = Query(default=None),
    q: str | None = Query(default=None, max_length=64),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    return list_bills(
        db,
        patient_id=patient_id,
        bill_type=bill_type,
        status=payment_status,
        q=q,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )


@router.get("/{bill_id}", response_model=BillOut)
def get_bill_endpoint(
    bill_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    try:
        return get_bill(db, bill_id)
    except BillingError as exc:
        raise http_error(exc) from exc


@router.put("/{bill_id}/payments", response_model=BillOut)
def reconcile_payments(
    bill_id: int,
    payload: PaymentSplitsIn,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    request_id: str | None = Header(default=None),
):
    try:
        bill = record_payment_splits(
            db,
            bill_id,
            payload.splits,
            user,
            request_id=request_id,
            ip_address=client_ip(request),
        )
    except BillingError as exc:
        db.rollback()
        raise http_error(exc) from exc
    db.commit()
    db.refresh(bill)
    return bill


@router.get("/{bill_id}/payments", response_model=list[PaymentSplitOut])
def list_active_payments(
    bill_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    try:
        bill = get_bill(db, bill_id)
    except BillingError as exc:
        raise http_error(exc) from exc
    return list(bill.payments)


@router.get("/{bill_id}/payments/history", response_model=list[PaymentSplitOut])
def payment_history(
    bill_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    try:
        return list_payment_history(db, bill_id)
    except BillingError as exc:
        raise http_error(exc) from exc
