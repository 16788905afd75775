from decimal import Decimal

import pytest

from app.schemas.billing import BillItemCreate
from app.services.bills import compute_bill_totals
from app.services.errors import BillingValidationError
from app.services.money import amounts_match, format_paise, percent_of


def _items(*amounts: tuple[int, int]) -> list[BillItemCreate]:
    return [
        BillItemCreate(description=f"Item {idx}", quantity=qty, unit_amount_paise=rate)
        for idx, (qty, rate) in enumerate(amounts, start=1)
    ]


def test_default_tax_is_five_percent_of_subtotal():
    totals = compute_bill_totals(_items((1, 50000), (1, 30000)))
    assert totals.subtotal_paise == 80000
    assert totals.tax_paise == 4000
    assert totals.total_paise == 84000


def test_total_is_subtotal_minus_discount_plus_tax():
    totals = compute_bill_totals(_items((3, 1250), (2, 999)), discount_paise=500, tax_paise=321)
    assert totals.subtotal_paise == 3 * 1250 + 2 * 999
    assert totals.total_paise == totals.subtotal_paise - 500 + 321


def test_tax_percent_rounds_half_up():
    totals = compute_bill_totals(_items((1, 1010)), tax_percent=Decimal("5"))
    assert totals.tax_paise == 51


def test_zero_tax_percent():
    totals = compute_bill_totals(_items((2, 4500)), tax_percent=Decimal("0"))
    assert totals.tax_paise == 0
    assert totals.total_paise == 9000


def test_discount_larger_than_bill_is_rejected():
    with pytest.raises(BillingValidationError):
        compute_bill_totals(_items((1, 1000)), discount_paise=5000, tax_paise=0)


@pytest.mark.parametrize(
    ("left", "right", "expected"),
    [(84000, 84000, True), (84000, 84001, True), (84000, 83999, True), (84000, 84002, False)],
)
def test_amounts_match_within_one_paisa(left: int, right: int, expected: bool):
    assert amounts_match(left, right) is expected


def test_percent_of_and_format():
    assert percent_of(80000, Decimal("5")) == 4000
    assert percent_of(80000, None) == 0
    assert format_paise(84000) == "840.00"
    assert format_paise(-5) == "-0.05"
