"""Totals engine: subtotal/total recomputation and the single commit point."""

import pytest

from brewops.extensions import db
from brewops.models import Order, OrderItem
from brewops.services.totals_service import compute_subtotal_cents, recompute_totals, save_order


def _order(items, discount=0, tax=0):
    order = Order(customer_name="Walk In", discount_cents=discount, tax_cents=tax)
    order.items = [
        OrderItem(menu_item_name=name, quantity=qty, unit_price_cents=price)
        for name, qty, price in items
    ]
    return order


class TestRecomputeTotals:

    def test_subtotal_is_sum_of_lines(self):
        items = [("Cappuccino", 1, 450), ("Latte", 2, 400)]
        assert compute_subtotal_cents(_order(items).items) == 1250

    def test_total_applies_discount_and_tax(self):
        order = recompute_totals(_order([("Cappuccino", 2, 450)], discount=100, tax=70))
        assert order.subtotal_cents == 900
        assert order.total_cents == 870

    def test_total_never_negative(self):
        order = recompute_totals(_order([("Espresso", 1, 300)], discount=1000))
        assert order.subtotal_cents == 300
        assert order.total_cents == 0

    def test_empty_order(self):
        order = recompute_totals(_order([], tax=50))
        assert order.subtotal_cents == 0
        assert order.total_cents == 50


class TestSaveOrder:

    def test_save_overwrites_caller_totals(self, db_session, admin, shop):
        order = _order([("Mocha", 3, 500)], tax=45)
        order.shop_id = shop.id
        order.cashier_id = admin.id
        order.created_by_id = admin.id
        order.subtotal_cents = 1
        order.total_cents = 1

        save_order(order)

        stored = db.session.get(Order, order.id)
        assert stored.subtotal_cents == 1500
        assert stored.total_cents == 1545
        assert stored.updated_at is not None

    def test_failed_recompute_writes_nothing(self, db_session, admin, shop, monkeypatch):
        order = _order([("Mocha", 1, 500)])
        order.shop_id = shop.id
        order.cashier_id = admin.id
        order.created_by_id = admin.id

        def _boom(_order):
            raise RuntimeError("recompute failed")

        monkeypatch.setattr("brewops.services.totals_service.recompute_totals", _boom)

        with pytest.raises(RuntimeError):
            save_order(order)

        assert db.session.query(Order).count() == 0
