from decimal import Decimal

import pytest

from app.core.errors import InvalidRequest
from app.services.fee_service import calculate_fees, to_minor_units


def test_fifty_dollars_at_five_percent():
    fees = calculate_fees(Decimal("50.00"), Decimal("5.0"))
    assert fees.platform_fee == Decimal("2.50")
    assert fees.business_amount == Decimal("50.00")
    assert fees.total_amount == Decimal("52.50")


def test_fee_rounds_half_up_to_cents():
    # 10.10 * 5% = 0.505
    fees = calculate_fees(Decimal("10.10"), Decimal("5"))
    assert fees.platform_fee == Decimal("0.51")
    assert fees.total_amount == Decimal("10.61")


def test_total_is_business_amount_plus_fee():
    for price in ("0.01", "19.99", "123.45", "999.99"):
        fees = calculate_fees(Decimal(price), Decimal("7.5"))
        assert fees.total_amount == fees.business_amount + fees.platform_fee


def test_free_session_has_no_fee():
    fees = calculate_fees(Decimal("0"), Decimal("5"))
    assert fees.platform_fee == Decimal("0.00")
    assert fees.total_amount == Decimal("0.00")


def test_zero_percent_keeps_price():
    fees = calculate_fees(Decimal("42.00"), Decimal("0"))
    assert fees.platform_fee == Decimal("0.00")
    assert fees.total_amount == Decimal("42.00")


def test_negative_price_rejected():
    with pytest.raises(InvalidRequest):
        calculate_fees(Decimal("-1.00"), Decimal("5"))


def test_negative_percentage_rejected():
    with pytest.raises(InvalidRequest):
        calculate_fees(Decimal("10.00"), Decimal("-5"))


def test_metadata_is_strings():
    md = calculate_fees(Decimal("50.00"), Decimal("5.0")).as_metadata()
    assert md == {"platform_fee": "2.50", "business_amount": "50.00", "fee_percentage": "5.0"}


def test_minor_units():
    assert to_minor_units(Decimal("52.50")) == 5250
    assert to_minor_units(Decimal("0.01")) == 1
