"""
Order mutation service.

Verifies:
- Totals invariant after every accepted mutation
- Quantity floor leaves the order untouched
- Self-order prevention and access scoping
- Tolerant removal of items and notes
- Status transitions and optimistic version retry
"""

from types import SimpleNamespace

import pytest
from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from brewops.extensions import db
from brewops.errors import (
    Conflict,
    Forbidden,
    InvalidQuantity,
    ItemNotFound,
    NotFound,
    NotOrderable,
    ShopNotFound,
    ValidationError,
)
from brewops.models import ActivityLog, Order, OrderItem
from brewops.services import audit_service, order_service
from brewops.services.concurrency import run_with_retry


def _create(actor, shop, items=None, **header):
    payload = {"shop_id": shop.id, "customer_name": "Rita Walker", **header}
    if items is not None:
        payload["items"] = items
    return order_service.create_order(actor, payload)


def _assert_totals_consistent(order_id):
    db.session.expire_all()
    order = db.session.get(Order, order_id)
    subtotal = sum(item.quantity * item.unit_price_cents for item in order.items)
    assert order.subtotal_cents == subtotal
    assert order.total_cents == max(subtotal - order.discount_cents + order.tax_cents, 0)
    return order


# =============================================================================
# SCENARIO: CREATE & MUTATE
# =============================================================================


class TestCreateAndMutateScenario:

    def test_full_scenario(self, db_session, customer, shop):
        order = _create(
            customer, shop,
            items=[{"menu_item_name": "Cappuccino", "quantity": 1, "unit_price_cents": 450}],
            discount_cents=0,
            tax_cents=70,
        )
        assert order.subtotal_cents == 450
        assert order.total_cents == 520

        order, latte_id = order_service.add_order_item(
            customer, order.id, {"menu_item_name": "Latte", "quantity": 2, "unit_price_cents": 400}
        )
        assert order.subtotal_cents == 1250
        assert order.total_cents == 1320

        with pytest.raises(InvalidQuantity):
            order_service.adjust_item_quantity(customer, order.id, latte_id, -3)

        order = _assert_totals_consistent(order.id)
        assert order.find_item(latte_id).quantity == 2
        assert order.subtotal_cents == 1250

        order = order_service.adjust_item_quantity(customer, order.id, latte_id, -1)
        assert order.find_item(latte_id).quantity == 1
        assert order.subtotal_cents == 850
        assert order.total_cents == 920


# =============================================================================
# CREATE
# =============================================================================


class TestCreateOrder:

    def test_defaults(self, db_session, customer, shop):
        order = _create(customer, shop)
        assert order.status == "pending"
        assert order.payment_status == "unpaid"
        assert order.order_type == "takeaway"
        assert order.currency == "USD"
        assert order.items == []
        assert order.total_cents == 0
        assert order.cashier_id == customer.id
        assert order.created_by_id == customer.id

    def test_item_defaults(self, db_session, customer, shop):
        order = _create(customer, shop, items=[{"menu_item_name": "Flat White", "unit_price_cents": 380}])
        item = order.items[0]
        assert item.quantity == 1
        assert item.size == "medium"
        assert item.item_status == "queued"
        assert item.modifiers == []

    def test_owner_cannot_order_from_own_shop(self, db_session, owner, shop):
        with pytest.raises(NotOrderable):
            _create(owner, shop)

    def test_admin_can_order_from_own_shop(self, db_session, admin, make_shop):
        admin_shop = make_shop(admin, name="Admin Roastery")
        order = _create(admin, admin_shop)
        assert order.shop_id == admin_shop.id

    def test_closed_shop_rejected_for_users(self, db_session, customer, owner, make_shop):
        closed = make_shop(owner, name="Night Owl", status="closed")
        with pytest.raises(NotOrderable):
            _create(customer, closed)

    def test_archived_shop_is_not_found(self, db_session, customer, owner, make_shop):
        archived = make_shop(owner, name="Old Corner", archived=True)
        with pytest.raises(ShopNotFound):
            _create(customer, archived)

    def test_unknown_shop(self, db_session, customer):
        with pytest.raises(ShopNotFound):
            order_service.create_order(customer, {"shop_id": 999, "customer_name": "Rita Walker"})

    def test_non_admin_cashier_is_ignored(self, db_session, customer, owner, shop):
        order = _create(customer, shop, cashier_id=owner.id)
        assert order.cashier_id == customer.id

    def test_admin_may_credit_cashier(self, db_session, admin, owner, shop):
        order = _create(admin, shop, cashier_id=owner.id)
        assert order.cashier_id == owner.id
        assert order.created_by_id == admin.id

    def test_admin_cashier_must_exist(self, db_session, admin, shop):
        with pytest.raises(ValidationError) as exc:
            _create(admin, shop, cashier_id=424242)
        assert exc.value.errors[0]["field"] == "cashier_id"

    def test_validation_reports_every_field(self, db_session, customer):
        with pytest.raises(ValidationError) as exc:
            order_service.create_order(customer, {
                "customer_name": "R",
                "status": "teleported",
                "items": [{"menu_item_name": "Mocha", "unit_price_cents": -5, "quantity": 0}],
            })
        fields = {err["field"] for err in exc.value.errors}
        assert {"shop_id", "customer_name", "status"} <= fields
        assert "items[0].unit_price_cents" in fields
        assert "items[0].quantity" in fields

    def test_create_is_audited(self, db_session, customer, shop):
        order = _create(customer, shop)
        entry = db.session.query(ActivityLog).filter_by(action="create_order").one()
        assert entry.entity_id == order.id
        assert entry.actor_id == customer.id


# =============================================================================
# LIST / GET
# =============================================================================


class TestListOrders:

    def test_non_admin_sees_only_own_orders(self, db_session, customer, make_user, admin, shop):
        other = make_user("other")
        mine = _create(customer, shop)
        _create(other, shop)
        _create(admin, shop)

        result = order_service.list_orders(customer, {})
        assert [order.id for order in result["items"]] == [mine.id]
        assert result["total"] == 1

    def test_cashier_list_excludes_orders_created_by_others(self, db_session, customer, admin, shop):
        rung_up = _create(admin, shop, cashier_id=customer.id)
        assert rung_up.cashier_id == customer.id

        result = order_service.list_orders(customer, {})
        assert result["items"] == []
        assert result["total"] == 0
        assert order_service.get_order(customer, rung_up.id).id == rung_up.id

    def test_admin_sees_everything(self, db_session, customer, make_user, admin, shop):
        other = make_user("other")
        _create(customer, shop)
        _create(other, shop)

        result = order_service.list_orders(admin, {})
        assert result["total"] == 2

    def test_pagination(self, db_session, customer, shop):
        for _ in range(5):
            _create(customer, shop)

        result = order_service.list_orders(customer, {"page": "2", "limit": "2"})
        assert result["page"] == 2
        assert result["limit"] == 2
        assert result["total"] == 5
        assert result["total_pages"] == 3
        assert len(result["items"]) == 2

    def test_limit_is_bounded(self, db_session, customer):
        with pytest.raises(ValidationError):
            order_service.list_orders(customer, {"limit": "101"})

    def test_search_matches_item_names(self, db_session, customer, shop):
        _create(customer, shop, items=[{"menu_item_name": "Iced Latte", "unit_price_cents": 500}])
        _create(customer, shop, items=[{"menu_item_name": "Espresso", "unit_price_cents": 250}])

        result = order_service.list_orders(customer, {"search": "latte"})
        assert result["total"] == 1
        assert result["items"][0].items[0].menu_item_name == "Iced Latte"

    def test_sort_by_total(self, db_session, customer, shop):
        cheap = _create(customer, shop, items=[{"menu_item_name": "Espresso", "unit_price_cents": 250}])
        dear = _create(customer, shop, items=[{"menu_item_name": "Pour Over", "unit_price_cents": 700}])

        result = order_service.list_orders(customer, {"sort_by": "total_cents", "sort_order": "asc"})
        assert [order.id for order in result["items"]] == [cheap.id, dear.id]

    def test_unknown_sort_key(self, db_session, customer):
        with pytest.raises(ValidationError):
            order_service.list_orders(customer, {"sort_by": "shoe_size"})

    def test_shop_filter_requires_orderable_shop(self, db_session, owner, shop):
        with pytest.raises(NotOrderable):
            order_service.list_orders(owner, {"shop_id": str(shop.id)})


class TestGetOrder:

    def test_unrelated_user_forbidden(self, db_session, customer, make_user, shop):
        order = _create(customer, shop)
        with pytest.raises(Forbidden):
            order_service.get_order(make_user("snoop"), order.id)

    def test_missing_order(self, db_session, customer):
        with pytest.raises(NotFound):
            order_service.get_order(customer, 12345)


# =============================================================================
# UPDATE / DELETE
# =============================================================================


class TestUpdateOrder:

    def test_discount_and_tax_recompute_total(self, db_session, customer, shop):
        order = _create(customer, shop, items=[{"menu_item_name": "Mocha", "quantity": 2, "unit_price_cents": 500}])
        order = order_service.update_order(customer, order.id, {"discount_cents": 200, "tax_cents": 80})
        assert order.subtotal_cents == 1000
        assert order.total_cents == 880

    def test_shop_id_is_not_writable(self, db_session, customer, shop):
        order = _create(customer, shop)
        with pytest.raises(ValidationError):
            order_service.update_order(customer, order.id, {"shop_id": shop.id})

    def test_status_moves_forward(self, db_session, customer, shop):
        order = _create(customer, shop)
        order = order_service.update_order(customer, order.id, {"status": "preparing"})
        order = order_service.update_order(customer, order.id, {"status": "served", "payment_status": "paid"})
        assert order.status == "served"
        assert order.payment_status == "paid"

    def test_status_cannot_move_backwards(self, db_session, customer, shop):
        order = _create(customer, shop, status="served")
        with pytest.raises(Conflict):
            order_service.update_order(customer, order.id, {"status": "pending"})

    def test_refund_requires_payment(self, db_session, customer, shop):
        order = _create(customer, shop)
        with pytest.raises(Conflict):
            order_service.update_order(customer, order.id, {"payment_status": "refunded"})

    def test_same_status_is_accepted(self, db_session, customer, shop):
        order = _create(customer, shop)
        order = order_service.update_order(customer, order.id, {"status": "pending"})
        assert order.status == "pending"

    def test_unrelated_user_forbidden(self, db_session, customer, make_user, shop):
        order = _create(customer, shop)
        with pytest.raises(Forbidden):
            order_service.update_order(make_user("snoop"), order.id, {"table_number": "7"})

    def test_update_is_audited_with_patch(self, db_session, customer, shop):
        order = _create(customer, shop)
        order_service.update_order(customer, order.id, {"table_number": "7"})
        entry = db.session.query(ActivityLog).filter_by(action="update_order").one()
        assert entry.metadata_json == {"table_number": "7"}


class TestDeleteOrder:

    def test_delete_removes_items_and_notes(self, db_session, customer, shop):
        order = _create(customer, shop, items=[{"menu_item_name": "Mocha", "unit_price_cents": 500}])
        order_service.add_order_note(customer, order.id, "Oat milk please")
        order_id = order.id

        order_service.delete_order(customer, order_id)

        assert db.session.get(Order, order_id) is None
        assert db.session.query(OrderItem).count() == 0

    def test_delete_missing(self, db_session, customer):
        with pytest.raises(NotFound):
            order_service.delete_order(customer, 777)


# =============================================================================
# ITEMS & NOTES
# =============================================================================


class TestItems:

    def test_totals_invariant_across_mutations(self, db_session, customer, shop):
        order = _create(customer, shop, tax_cents=30, discount_cents=10)
        order, espresso_id = order_service.add_order_item(
            customer, order.id, {"menu_item_name": "Espresso", "quantity": 2, "unit_price_cents": 250}
        )
        _assert_totals_consistent(order.id)

        order, cookie_id = order_service.add_order_item(
            customer, order.id, {"menu_item_name": "Cookie", "unit_price_cents": 199}
        )
        _assert_totals_consistent(order.id)

        order_service.adjust_item_quantity(customer, order.id, espresso_id, 3)
        order = _assert_totals_consistent(order.id)
        assert order.subtotal_cents == 5 * 250 + 199

        order_service.remove_order_item(customer, order.id, cookie_id)
        order = _assert_totals_consistent(order.id)
        assert order.total_cents == 1250 - 10 + 30

    def test_item_ids_are_distinct(self, db_session, customer, shop):
        order = _create(customer, shop)
        _, first = order_service.add_order_item(customer, order.id, {"menu_item_name": "Latte", "unit_price_cents": 400})
        _, second = order_service.add_order_item(customer, order.id, {"menu_item_name": "Latte", "unit_price_cents": 400})
        assert first != second

    def test_adjust_unknown_item(self, db_session, customer, shop):
        order = _create(customer, shop)
        with pytest.raises(ItemNotFound):
            order_service.adjust_item_quantity(customer, order.id, 999, 1)

    @pytest.mark.parametrize("delta", [0, 21, -21, "two", 1.5])
    def test_adjust_rejects_bad_delta(self, db_session, customer, shop, delta):
        order = _create(customer, shop, items=[{"menu_item_name": "Latte", "quantity": 5, "unit_price_cents": 400}])
        with pytest.raises(ValidationError):
            order_service.adjust_item_quantity(customer, order.id, order.items[0].id, delta)

    def test_quantity_floor_changes_nothing(self, db_session, customer, shop):
        order = _create(customer, shop, items=[{"menu_item_name": "Latte", "quantity": 2, "unit_price_cents": 400}])
        item_id = order.items[0].id
        version_before = order.version_id

        with pytest.raises(InvalidQuantity):
            order_service.adjust_item_quantity(customer, order.id, item_id, -2)

        order = _assert_totals_consistent(order.id)
        assert order.find_item(item_id).quantity == 2
        assert order.version_id == version_before

    def test_item_deleted_after_read_is_not_found(self, db_session, customer, shop, monkeypatch):
        order = _create(customer, shop, items=[{"menu_item_name": "Latte", "quantity": 2, "unit_price_cents": 400}])
        order_id, item_id = order.id, order.items[0].id
        db.session.execute(delete(OrderItem).where(OrderItem.id == item_id))
        db.session.commit()
        monkeypatch.setattr(Order, "find_item", lambda self, _id: SimpleNamespace(id=_id, quantity=2))

        with pytest.raises(ItemNotFound):
            order_service.adjust_item_quantity(customer, order_id, item_id, 1)

    def test_quantity_dropped_after_read_is_rejected(self, db_session, customer, shop, monkeypatch):
        order = _create(customer, shop, items=[{"menu_item_name": "Latte", "quantity": 1, "unit_price_cents": 400}])
        order_id, item_id = order.id, order.items[0].id
        monkeypatch.setattr(Order, "find_item", lambda self, _id: SimpleNamespace(id=_id, quantity=5))

        with pytest.raises(InvalidQuantity):
            order_service.adjust_item_quantity(customer, order_id, item_id, -2)

        db.session.expire_all()
        assert db.session.get(OrderItem, item_id).quantity == 1

    def test_set_item_status(self, db_session, customer, shop):
        order = _create(customer, shop, items=[{"menu_item_name": "Latte", "unit_price_cents": 400}])
        item_id = order.items[0].id

        order = order_service.set_item_status(customer, order.id, item_id, "ready")
        assert order.find_item(item_id).item_status == "ready"
        assert order.subtotal_cents == 400

    def test_set_status_unknown_item(self, db_session, customer, shop):
        order = _create(customer, shop)
        with pytest.raises(ItemNotFound):
            order_service.set_item_status(customer, order.id, 999, "ready")

    def test_set_status_rejects_unknown_value(self, db_session, customer, shop):
        order = _create(customer, shop, items=[{"menu_item_name": "Latte", "unit_price_cents": 400}])
        with pytest.raises(ValidationError):
            order_service.set_item_status(customer, order.id, order.items[0].id, "burnt")

    def test_remove_item_is_idempotent(self, db_session, customer, shop):
        order = _create(customer, shop, items=[
            {"menu_item_name": "Latte", "unit_price_cents": 400},
            {"menu_item_name": "Scone", "unit_price_cents": 325},
        ])
        latte_id = order.items[0].id

        first = order_service.remove_order_item(customer, order.id, latte_id).to_dict()
        second = order_service.remove_order_item(customer, order.id, latte_id).to_dict()

        assert [item["id"] for item in first["items"]] == [item["id"] for item in second["items"]]
        assert first["subtotal_cents"] == second["subtotal_cents"] == 325
        assert first["total_cents"] == second["total_cents"]

    def test_item_mutation_requires_access(self, db_session, customer, make_user, shop):
        order = _create(customer, shop)
        with pytest.raises(Forbidden):
            order_service.add_order_item(
                make_user("snoop"), order.id, {"menu_item_name": "Latte", "unit_price_cents": 400}
            )

    def test_item_mutations_are_audited(self, db_session, customer, shop):
        order = _create(customer, shop)
        order, item_id = order_service.add_order_item(
            customer, order.id, {"menu_item_name": "Latte", "unit_price_cents": 400}
        )
        order_service.adjust_item_quantity(customer, order.id, item_id, 1)
        order_service.set_item_status(customer, order.id, item_id, "in_preparation")
        order_service.remove_order_item(customer, order.id, item_id)

        actions = {entry.action for entry in db.session.query(ActivityLog).all()}
        assert {
            "add_order_item",
            "adjust_order_item_quantity",
            "update_order_item_status",
            "remove_order_item",
        } <= actions


class TestNotes:

    def test_add_note_records_author(self, db_session, customer, shop):
        order = _create(customer, shop)
        order = order_service.add_order_note(customer, order.id, "  Extra hot  ")
        note = order.notes[0]
        assert note.text == "Extra hot"
        assert note.author_id == customer.id

    def test_note_length_limit(self, db_session, customer, shop):
        order = _create(customer, shop)
        with pytest.raises(ValidationError):
            order_service.add_order_note(customer, order.id, "x" * 801)

    def test_remove_note_is_idempotent(self, db_session, customer, shop):
        order = _create(customer, shop)
        order = order_service.add_order_note(customer, order.id, "No sugar")
        note_id = order.notes[0].id

        order = order_service.remove_order_note(customer, order.id, note_id)
        assert order.notes == []
        order = order_service.remove_order_note(customer, order.id, note_id)
        assert order.notes == []


# =============================================================================
# CONCURRENCY & AUDIT
# =============================================================================


class TestOptimisticVersion:

    def test_stale_totals_write_is_rejected(self, db_session, customer, shop):
        order = _create(customer, shop, items=[{"menu_item_name": "Latte", "unit_price_cents": 400}])
        assert order.version_id == 1

        # Another writer bumps the version underneath the loaded object
        db.session.execute(
            update(Order)
            .where(Order.id == order.id)
            .values(version_id=Order.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        order.tax_cents = 10

        with pytest.raises(StaleDataError):
            db.session.commit()
        db.session.rollback()

    def test_run_with_retry_reruns_after_stale_data(self, db_session):
        calls = []

        def _flaky():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("version moved")
            return "done"

        assert run_with_retry(_flaky, backoff_base=0) == "done"
        assert len(calls) == 2

    def test_run_with_retry_gives_up(self, db_session):
        def _always_stale():
            raise StaleDataError("version moved")

        with pytest.raises(StaleDataError):
            run_with_retry(_always_stale, attempts=2, backoff_base=0)


class TestAuditSink:

    def test_audit_failure_keeps_primary_mutation(self, db_session, customer, shop, monkeypatch):
        order = _create(customer, shop)

        def _fail_commit():
            raise SQLAlchemyError("audit store down")

        monkeypatch.setattr(db.session, "commit", _fail_commit)
        result = audit_service.record_activity(
            actor_id=customer.id, action="update_order", entity_type="order", entity_id=order.id
        )
        monkeypatch.undo()

        assert result is None
        assert db.session.get(Order, order.id) is not None
