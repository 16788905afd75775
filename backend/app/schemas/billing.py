from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.billing import BillType, PaymentMethod, PaymentStatus


class BillItemCreate(BaseModel):
    description: str = Field(min_length=1, max_length=255)
    quantity: int = Field(default=1, ge=1)
    unit_amount_paise: int = Field(default=0, ge=0)
    category: str = "service"
    ref_id: Optional[str] = Field(default=None, max_length=64)
    batch_number: Optional[str] = Field(default=None, max_length=64)


class BillItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    quantity: int
    unit_amount_paise: int
    total_paise: int
    line_type_code: str
    ref_id: Optional[str] = None
    batch_number: Optional[str] = None


class BillCreate(BaseModel):
    patient_id: int
    bill_type: BillType = BillType.consultation
    encounter_id: Optional[int] = None
    appointment_id: Optional[int] = None
    bed_allocation_id: Optional[int] = None
    bill_date: Optional[date] = None
    items: list[BillItemCreate] = Field(min_length=1)
    discount_paise: int = Field(default=0, ge=0)
    tax_paise: Optional[int] = Field(default=None, ge=0)
    tax_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    # Optional caller-computed figures; checked against the line items.
    subtotal_paise: Optional[int] = Field(default=None, ge=0)
    total_paise: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class PaymentSplitIn(BaseModel):
    method: PaymentMethod
    amount_paise: int = Field(ge=0)
    reference: Optional[str] = Field(default=None, max_length=120)
    note: Optional[str] = None


class PaymentSplitsIn(BaseModel):
    splits: list[PaymentSplitIn]


class PaymentSplitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    method: PaymentMethod
    amount_paise: int
    reference: Optional[str] = None
    note: Optional[str] = None
    paid_at: datetime
    received_by_user_id: int
    deleted_at: Optional[datetime] = None


class BillSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bill_number: str
    patient_id: int
    bill_type: BillType
    bill_date: date
    subtotal_paise: int
    discount_paise: int
    tax_paise: int
    total_paise: int
    amount_paid_paise: int
    balance_due_paise: int
    payment_status: PaymentStatus
    payment_method: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class BillOut(BillSummaryOut):
    encounter_id: Optional[int] = None
    appointment_id: Optional[int] = None
    bed_allocation_id: Optional[int] = None
    notes: Optional[str] = None
    created_by_user_id: int
    updated_by_user_id: Optional[int] = None
    items: list[BillItemOut]
    payments: list[PaymentSplitOut]
