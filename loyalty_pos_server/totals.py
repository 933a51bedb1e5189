"""Totals calculator."""

from decimal import Decimal
from typing import Iterable

from .money import ZERO, fix_money
from .models import LineItem, TransactionTotals


def sum_subtotals(items: Iterable[LineItem]) -> Decimal:
    """Sum of ``unit_amount * quantity``, rounded to cents after every addition."""
    total = ZERO
    for item in items:
        total = fix_money(total + item.subtotal)
    return total


def redemption_for(balance: Decimal, sale_subtotal: Decimal, requested: bool) -> Decimal:
    """Points that can be applied: bounded by the balance and by the sale subtotal."""
    if not requested:
        return ZERO
    return fix_money(max(ZERO, min(balance, sale_subtotal)))


def calculate_totals(
    items: Iterable[LineItem],
    customer_balance: Decimal,
    redemption_requested: bool,
) -> TransactionTotals:
    """
    Derive the transaction amounts from the cart.

    Loyalty items never count toward the sale subtotal, so redemption can only
    discount monetary sales.

    Args:
        items: Cart line items
        customer_balance: Customer's redeemable points balance
        redemption_requested: Whether the customer wants to use their points

    Returns:
        Totals for the given inputs. The function keeps no state.
    """
    items = list(items)
    balance = fix_money(customer_balance)
    sale_subtotal = sum_subtotals(item for item in items if item.is_sale)
    loyalty_subtotal = sum_subtotals(item for item in items if item.is_loyalty)
    redemption_applied = redemption_for(balance, sale_subtotal, redemption_requested)

    return TransactionTotals(
        sale_subtotal=sale_subtotal,
        loyalty_subtotal=loyalty_subtotal,
        redemption_applied=redemption_applied,
        amount_due=fix_money(max(ZERO, sale_subtotal - redemption_applied)),
        projected_balance=fix_money(balance - redemption_applied),
    )
