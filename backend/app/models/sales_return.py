from __future__ import annotations

import enum
from datetime import date

from sqlalchemy import Date, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import AuditMixin, Base


class RefundMode(str, enum.Enum):
    cash = "cash"
    card = "card"
    upi = "upi"
    bank_transfer = "bank_transfer"


class ReturnReason(str, enum.Enum):
    wrong_medicine = "wrong_medicine"
    excess_quantity = "excess_quantity"
    expired = "expired"
    damaged = "damaged"
    adverse_reaction = "adverse_reaction"
    doctor_changed = "doctor_changed"
    customer_request = "customer_request"
    other = "other"


class RestockStatus(str, enum.Enum):
    pending = "pending"
    restocked = "restocked"
    disposed = "disposed"


class SalesReturn(Base, AuditMixin):
    __tablename__ = "sales_return"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    return_number: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    bill_id: Mapped[int] = mapped_column(
        "billing_id", ForeignKey("billing.id"), nullable=False, index=True
    )
    return_date: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    refund_mode: Mapped[RefundMode] = mapped_column(
        Enum(RefundMode, name="refund_mode"), nullable=False, default=RefundMode.cash
    )
    # Value of the returned lines; refund_due_paise is what goes back to the customer.
    refund_amount_paise: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refund_due_paise: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reason: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    bill = relationship("Bill", back_populates="sales_returns")
    items = relationship(
        "SalesReturnItem",
        back_populates="sales_return",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SalesReturnItem.id",
    )


class SalesReturnItem(Base):
    __tablename__ = "sales_return_items"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    return_id: Mapped[int] = mapped_column(
        ForeignKey("sales_return.id", ondelete="CASCADE"), nullable=False, index=True
    )
    bill_item_id: Mapped[int] = mapped_column(
        "billing_item_id", ForeignKey("billing_item.id"), nullable=False, index=True
    )
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    batch_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    total_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[ReturnReason] = mapped_column(
        Enum(ReturnReason, name="return_reason"), nullable=False, default=ReturnReason.other
    )
    restock_status: Mapped[RestockStatus] = mapped_column(
        Enum(RestockStatus, name="restock_status"), nullable=False, default=RestockStatus.pending
    )

    sales_return = relationship("SalesReturn", back_populates="items")
