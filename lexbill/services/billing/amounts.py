"""Monetary amount computation.

All figures come from a BillingConfig snapshot and are Decimals rounded
half-up to cents.
"""

from decimal import ROUND_HALF_UP, Decimal

from lexbill.models.domain import BillingConfig, InvoiceAmounts

CENT = Decimal("0.01")


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_invoice_amounts(config: BillingConfig) -> InvoiceAmounts:
    """``total = base_fee + base_fee * vat_rate / 100``."""
    vat_amount = to_cents(config.base_fee * config.vat_rate / Decimal(100))
    return InvoiceAmounts(
        base_fee=to_cents(config.base_fee),
        vat_rate=config.vat_rate,
        vat_amount=vat_amount,
        total=to_cents(config.base_fee) + vat_amount,
    )


def compute_mileage_amount(config: BillingConfig, district: str) -> Decimal:
    """Rate configured for ``district``, or 0.00 when none is configured."""
    return to_cents(config.mileage_rates.get(district, Decimal(0)))
