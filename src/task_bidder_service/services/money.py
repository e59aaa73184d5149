"""Decimal amount parsing and platform fee computation."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from task_bidder_service.core.exceptions import ServiceError

CENT = Decimal("0.01")

# Largest amount accepted on any money field; matches NUMERIC(10, 2).
MAX_AMOUNT = Decimal("99999999.99")


def parse_amount(value: object, field_name: str) -> Decimal:
    """
    Parse a positive money amount with at most two decimal places.

    Accepts ints, Decimals (JSON bodies are decoded with ``parse_float=Decimal``)
    and numeric strings. Floats and bools are rejected.

    Raises:
        ServiceError: VALIDATION_ERROR
    """
    if isinstance(value, bool) or not isinstance(value, int | Decimal | str):
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} must be a decimal number",
            400,
            {"field": field_name},
        )

    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} must be a decimal number",
            400,
            {"field": field_name},
        ) from exc

    if not amount.is_finite() or amount <= 0:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} must be greater than zero",
            400,
            {"field": field_name},
        )
    # Bounded before quantize, which overflows the context precision on huge values.
    if amount > MAX_AMOUNT:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} exceeds the maximum amount",
            400,
            {"field": field_name},
        )
    if amount != amount.quantize(CENT, rounding=ROUND_HALF_UP):
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} must have at most two decimal places",
            400,
            {"field": field_name},
        )
    return amount.quantize(CENT)


def compute_platform_fee(amount: Decimal, fee_rate: Decimal) -> Decimal:
    """Return ``amount * fee_rate`` rounded half-up to cents."""
    return (amount * fee_rate).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    """Convert a cent-quantized amount to integer minor units."""
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))
