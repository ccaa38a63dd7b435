from __future__ import annotations
from typing import Iterable

from tableside.schemas import CartItem, CartItemCustomization, MenuItem, Totals

TAX_RATE = 0.10


def price_of(item: MenuItem, customizations: CartItemCustomization) -> float:
    """Base price plus the deltas of every selected option. Unknown option ids cost nothing."""
    total = item.price
    for group in item.customization_options:
        deltas = {opt.id: opt.price for opt in group.options}
        for selected in customizations.get(group.id, []):
            total += deltas.get(selected, 0)
    return total


def sum_lines(items: Iterable[CartItem]) -> float:
    return sum((it.price * it.quantity for it in items), 0.0)


def totals(items: Iterable[CartItem], tax_rate: float = TAX_RATE) -> Totals:
    subtotal = sum_lines(items)
    tax = subtotal * tax_rate
    return Totals(subtotal=subtotal, tax=tax, total=subtotal + tax)
