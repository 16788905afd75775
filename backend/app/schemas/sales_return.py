from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.sales_return import RefundMode, RestockStatus, ReturnReason
from app.schemas.billing import BillSummaryOut


class SalesReturnLineIn(BaseModel):
    bill_item_id: int
    quantity: int = Field(ge=1)
    reason: ReturnReason = ReturnReason.other
    restock: bool = True


class SalesReturnCreate(BaseModel):
    refund_mode: RefundMode = RefundMode.cash
    return_date: Optional[date] = None
    remarks: Optional[str] = None
    items: list[SalesReturnLineIn] = Field(min_length=1)


class SalesReturnItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bill_item_id: int
    description: str
    ref_id: Optional[str] = None
    batch_number: Optional[str] = None
    quantity: int
    unit_amount_paise: int
    total_paise: int
    reason: ReturnReason
    restock_status: RestockStatus


class SalesReturnOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    return_number: str
    bill_id: int
    return_date: date
    refund_mode: RefundMode
    refund_amount_paise: int
    refund_due_paise: int
    total_quantity: int
    reason: str
    remarks: Optional[str] = None
    created_at: datetime
    created_by_user_id: int
    items: list[SalesReturnItemOut]


class SalesReturnResultOut(SalesReturnOut):
    bill: BillSummaryOut
