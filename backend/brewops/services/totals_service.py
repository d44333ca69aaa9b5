# Overview: Totals engine and the single commit point for order aggregates.

"""
Totals Engine

Invariant: an Order is only ever committed through save_order, and
save_order recomputes subtotal/total from the item rows currently attached
to the aggregate. Callers never assign subtotal_cents or total_cents.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Order
from brewops.time_utils import utcnow


def compute_subtotal_cents(items) -> int:
    return sum(item.quantity * item.unit_price_cents for item in items)


def recompute_totals(order: Order) -> Order:
    """
    subtotal = sum(quantity * unit price); total = max(subtotal - discount + tax, 0).

    Integer cents make two-decimal rounding exact.
    """
    subtotal = compute_subtotal_cents(order.items)
    discount = order.discount_cents or 0
    tax = order.tax_cents or 0

    order.subtotal_cents = subtotal
    order.total_cents = max(subtotal - discount + tax, 0)
    return order


def save_order(order: Order) -> Order:
    """
    Recompute totals and commit.

    If recompute fails nothing is written: the session is rolled back and the
    error propagates.
    """
    try:
        recompute_totals(order)
        order.updated_at = utcnow()
        db.session.add(order)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return order
