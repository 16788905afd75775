from fastapi import APIRouter, Depends, Header, Request, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import client_ip, get_current_user, http_error, require_roles
from app.models.user import User
from app.schemas.sales_return import SalesReturnCreate, SalesReturnOut, SalesReturnResultOut
from app.services.errors import BillingError
from app.services.returns import create_sales_return, get_sales_return, list_sales_returns

RETURN_ROLES = ("admin", "billing", "pharmacist")

router = APIRouter(prefix="/bills/{bill_id}/returns", tags=["sales-returns"])
returns_router = APIRouter(prefix="/sales-returns", tags=["sales-returns"])


@router.post("", response_model=SalesReturnResultOut, status_code=status.HTTP_201_CREATED)
def create_return(
    bill_id: int,
    payload: SalesReturnCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*RETURN_ROLES)),
    request_id: str | None = Header(default=None),
):
    try:
        sales_return, _impact = create_sales_return(
            db,
            bill_id,
            payload,
            user,
            request_id=request_id,
            ip_address=client_ip(request),
        )
    except BillingError as exc:
        db.rollback()
        raise http_error(exc) from exc
    db.commit()
    db.refresh(sales_return)
    return sales_return


@router.get("", response_model=list[SalesReturnOut])
def list_returns(
    bill_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    try:
        return list_sales_returns(db, bill_id)
    except BillingError as exc:
        raise http_error(exc) from exc


@returns_router.get("/{return_id}", response_model=SalesReturnOut)
def get_return(
    return_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    try:
        return get_sales_return(db, return_id)
    except BillingError as exc:
        raise http_error(exc) from exc
