from __future__ import annotations

from app.services.money import format_paise


class BillingError(Exception):
    """Base class for failures raised by the billing services."""


class BillingValidationError(BillingError, ValueError):
    """Submitted data is inconsistent; nothing was written."""


class PaymentMismatchError(BillingValidationError):
    def __init__(self, *, submitted_paise: int, total_paise: int):
        self.submitted_paise = submitted_paise
        self.total_paise = total_paise
        super().__init__(
            "Payment amount must equal the total bill amount "
            f"(submitted={format_paise(submitted_paise)} total={format_paise(total_paise)})"
        )


class ReturnQuantityError(BillingValidationError):
    pass


class AuthenticationRequiredError(BillingError):
    pass


class NotFoundError(BillingError, LookupError):
    pass


class BillingConflictError(BillingError):
    """The bill changed underneath the request or is in a state that forbids it."""


class BillWriteError(BillingError):
    """The store rejected part of a bill; ``stage`` names which part."""

    stage = "header"

    def __init__(self, message: str, *, bill_number: str, cause: Exception | None = None):
        self.bill_number = bill_number
        self.cause = cause
        super().__init__(message)

    @property
    def diagnostic(self) -> str | None:
        if self.cause is None:
            return None
        orig = getattr(self.cause, "orig", None)
        return str(orig or self.cause)


class LineItemsWriteError(BillWriteError):
    """Line items failed after the header was written; the header was removed."""

    stage = "line_items"
