# Overview: Line subtotals and cart totals for checkout. Pure functions, no DB access.

from __future__ import annotations

from dataclasses import dataclass

from .stock_service import ReservedLine


@dataclass(frozen=True)
class PricedLine:
    product_id: str
    name: str
    unit_price_cents: int
    quantity: int
    subtotal_cents: int


@dataclass(frozen=True)
class Totals:
    quantity: int
    amount_cents: int


def price_line(line: ReservedLine) -> PricedLine:
    """
    Subtotal for one line. Prices are held in cents, so unit price x quantity
    is already exact to 2 decimal places.
    """
    if line.unit_price_cents < 0 or line.quantity < 0:
        raise ValueError(f"Negative price or quantity on validated line {line.product_id}")

    return PricedLine(
        product_id=line.product_id,
        name=line.name,
        unit_price_cents=line.unit_price_cents,
        quantity=line.quantity,
        subtotal_cents=line.unit_price_cents * line.quantity,
    )


def price_lines(lines: list[ReservedLine]) -> list[PricedLine]:
    return [price_line(line) for line in lines]


def compute_totals(lines: list[PricedLine]) -> Totals:
    return Totals(
        quantity=sum(line.quantity for line in lines),
        amount_cents=sum(line.subtotal_cents for line in lines),
    )
