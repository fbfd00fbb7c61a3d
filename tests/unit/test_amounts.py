"""Tests for invoice and mileage amount computation."""

from decimal import Decimal

import pytest

from lexbill.services.billing.amounts import (
    compute_invoice_amounts,
    compute_mileage_amount,
    to_cents,
)
from tests.conftest import make_billing_config


class TestInvoiceAmounts:
    def test_default_fee_with_21_percent_vat(self) -> None:
        amounts = compute_invoice_amounts(make_billing_config())
        assert amounts.base_fee == Decimal("203.00")
        assert amounts.vat_amount == Decimal("42.63")
        assert amounts.total == Decimal("245.63")

    def test_zero_vat(self) -> None:
        amounts = compute_invoice_amounts(make_billing_config(vat_rate=Decimal("0")))
        assert amounts.vat_amount == Decimal("0.00")
        assert amounts.total == Decimal("203.00")

    def test_vat_rounds_half_up(self) -> None:
        # 10.25 * 10% = 1.025 -> 1.03
        amounts = compute_invoice_amounts(
            make_billing_config(base_fee=Decimal("10.25"), vat_rate=Decimal("10"))
        )
        assert amounts.vat_amount == Decimal("1.03")
        assert amounts.total == Decimal("11.28")

    def test_total_is_sum_of_parts(self) -> None:
        amounts = compute_invoice_amounts(
            make_billing_config(base_fee=Decimal("999.99"), vat_rate=Decimal("21"))
        )
        assert amounts.total == amounts.base_fee + amounts.vat_amount


class TestMileageAmount:
    def test_configured_district(self) -> None:
        assert compute_mileage_amount(make_billing_config(), "Marbella") == Decimal("25.50")

    def test_district_without_rate_is_zero(self) -> None:
        assert compute_mileage_amount(make_billing_config(), "Antequera") == Decimal("0.00")

    def test_rate_is_rounded_to_cents(self) -> None:
        config = make_billing_config(mileage_rates={"Torrox": Decimal("12.345")})
        assert compute_mileage_amount(config, "Torrox") == Decimal("12.35")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (Decimal("1.005"), Decimal("1.01")),
        (Decimal("1.004"), Decimal("1.00")),
        (Decimal("2"), Decimal("2.00")),
    ],
)
def test_to_cents(value: Decimal, expected: Decimal) -> None:
    assert to_cents(value) == expected
