from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

# Amounts within one paisa (0.01 of the currency unit) are treated as equal.
PAYMENT_TOLERANCE_PAISE = 1


def amounts_match(left: int, right: int, tolerance: int = PAYMENT_TOLERANCE_PAISE) -> bool:
    return abs(int(left) - int(right)) <= tolerance


def percent_of(amount_paise: int, percent) -> int:
    value = Decimal(int(amount_paise)) * Decimal(str(percent or 0)) / Decimal("100")
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_paise(amount_paise: int) -> str:
    sign = "-" if amount_paise < 0 else ""
    rupees, paise = divmod(abs(int(amount_paise)), 100)
    return f"{sign}{rupees}.{paise:02d}"
