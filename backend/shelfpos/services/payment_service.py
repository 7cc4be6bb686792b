# Overview: Tendered-amount validation and change calculation for checkout.

"""
Payment Validator

Single tender, single currency.
- the tendered amount stays an exact Decimal until it has been compared
  with the total, so a payment short by a fraction of a cent is rejected
- only the recorded amounts are rounded (half-up to the cent); change is
  then amount paid minus total, exact in cents
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..validation import ConflictError, ValidationError, decimal_to_cents, to_amount, to_decimal


class InsufficientPaymentError(ConflictError):
    """Payment shortfall. A conflict in kind, reported as a client (400) error."""
    status_code = 400
    default_code = "InsufficientPayment"


@dataclass(frozen=True)
class PaymentResult:
    amount_paid_cents: int
    change_cents: int
    currency: str


def parse_tendered(value) -> Decimal:
    """
    Parse the tendered amount. Returns the exact, unrounded Decimal.

    Raises:
        ValidationError(InvalidPayment): missing, non-numeric, non-finite or negative
    """
    if value is None:
        raise ValidationError("amountPaid is required", code="InvalidPayment")
    return to_decimal(value, "amountPaid", code="InvalidPayment")


def validate_payment(total_cents: int, tendered: Decimal, currency: str) -> PaymentResult:
    """
    Compare the tendered amount with total_cents and compute change.

    Raises:
        ValidationError(InvalidPayment): tendered amount is negative
        InsufficientPaymentError: tendered amount is below the total
    """
    tendered = Decimal(tendered)
    if tendered < 0:
        raise ValidationError("amountPaid must be >= 0", code="InvalidPayment")

    total = Decimal(total_cents) / 100
    if tendered < total:
        raise InsufficientPaymentError(
            f"Amount paid is insufficient. Total is {total:.2f}, paid {tendered}",
            details={
                "total": to_amount(total_cents),
                "amountPaid": float(tendered),
                "shortfall": float(total - tendered),
            },
        )

    amount_paid_cents = decimal_to_cents(tendered)
    return PaymentResult(
        amount_paid_cents=amount_paid_cents,
        change_cents=amount_paid_cents - total_cents,
        currency=currency,
    )
