from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Integer, String, Text, and_
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import AuditMixin, Base, SoftDeleteMixin


class BillType(str, enum.Enum):
    consultation = "consultation"
    lab = "lab"
    radiology = "radiology"
    pharmacy = "pharmacy"
    ipd = "ipd"
    outpatient = "outpatient"
    scan = "scan"
    other = "other"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    partial = "partial"
    paid = "paid"
    overdue = "overdue"
    cancelled = "cancelled"


class PaymentMethod(str, enum.Enum):
    cash = "cash"
    card = "card"
    upi = "upi"
    gpay = "gpay"
    ghpay = "ghpay"
    insurance = "insurance"
    credit = "credit"
    others = "others"


SPLIT_PAYMENT_METHOD = "split"


class Bill(Base, AuditMixin):
    __tablename__ = "billing"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    bill_number: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), nullable=False, index=True)
    encounter_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    appointment_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    bed_allocation_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    bill_type: Mapped[BillType] = mapped_column(
        Enum(BillType, name="bill_type"), nullable=False, default=BillType.consultation
    )
    bill_date: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    subtotal_paise: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_paise: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tax_paise: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_paise: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount_paid_paise: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    balance_due_paise: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.pending,
        index=True,
    )
    # A PaymentMethod value, SPLIT_PAYMENT_METHOD, or null before any payment.
    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    patient = relationship("Patient", back_populates="bills", lazy="joined")
    items = relationship(
        "BillItem",
        back_populates="bill",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BillItem.id",
    )
    payments = relationship(
        "BillPayment",
        primaryjoin=lambda: and_(Bill.id == BillPayment.bill_id, BillPayment.deleted_at.is_(None)),
        viewonly=True,
        lazy="selectin",
        order_by=lambda: BillPayment.id,
    )
    sales_returns = relationship(
        "SalesReturn", back_populates="bill", lazy="selectin", order_by="SalesReturn.id"
    )


class BillItem(Base):
    __tablename__ = "billing_item"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    bill_id: Mapped[int] = mapped_column(
        "billing_id", ForeignKey("billing.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_type_id: Mapped[int] = mapped_column(ForeignKey("ref_codes.id"), nullable=False)
    ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column("qty", Integer, nullable=False, default=1)
    unit_amount_paise: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_paise: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    batch_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    bill = relationship("Bill", back_populates="items")
    line_type = relationship("RefCode", lazy="joined")

    @property
    def line_type_code(self) -> str:
        return self.line_type.code if self.line_type else "service"


class BillPayment(Base, SoftDeleteMixin):
    __tablename__ = "billing_payments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    bill_id: Mapped[int] = mapped_column(
        "billing_id", ForeignKey("billing.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, name="billing_payment_method"), nullable=False
    )
    reference: Mapped[str | None] = mapped_column(String(120), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    received_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    received_by = relationship("User", foreign_keys=[received_by_user_id], lazy="joined")
