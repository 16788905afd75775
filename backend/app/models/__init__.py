from app.models.base import Base
from app.models.user import Role, User
from app.models.audit_log import AuditLog
from app.models.patient import Patient
from app.models.ref_code import RefCode
from app.models.billing import (
    SPLIT_PAYMENT_METHOD,
    Bill,
    BillItem,
    BillPayment,
    BillType,
    PaymentMethod,
    PaymentStatus,
)
from app.models.sales_return import (
    RefundMode,
    RestockStatus,
    ReturnReason,
    SalesReturn,
    SalesReturnItem,
)

__all__ = [
    "Base",
    "Role",
    "User",
    "AuditLog",
    "Patient",
    "RefCode",
    "Bill",
    "BillItem",
    "BillPayment",
    "BillType",
    "PaymentMethod",
    "PaymentStatus",
    "SPLIT_PAYMENT_METHOD",
    "SalesReturn",
    "SalesReturnItem",
    "RefundMode",
    "ReturnReason",
    "RestockStatus",
]
