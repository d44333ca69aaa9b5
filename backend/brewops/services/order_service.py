# Overview: Order lifecycle service; header CRUD and targeted item/note mutations.

"""
Order Mutation Service

Every mutating path ends in totals_service.save_order, which recomputes
subtotal/total from the freshly re-read item rows before committing.

Embedded items and notes are mutated one row at a time by id (INSERT,
UPDATE ... WHERE id, DELETE ... WHERE id). Sibling rows are never rewritten,
so concurrent edits to different items of the same order don't clobber each
other. The aggregate is then re-read and saved; a stale totals write is
caught by the order's version column and the operation is retried.
"""

from __future__ import annotations

import math

from flask import current_app
from sqlalchemy import update, delete, or_

from ..extensions import db
from ..models import Order, OrderItem, OrderNote, Shop, User
from ..models.orders import ITEM_STATUSES, ORDER_STATUSES, PAYMENT_STATUSES
from ..errors import (
    Forbidden,
    InvalidQuantity,
    ItemNotFound,
    Conflict,
    NotFound,
    NotOrderable,
    ShopNotFound,
    ValidationError,
)
from ..validation import (
    parse_choice,
    parse_id,
    parse_note_text,
    parse_pagination,
    parse_quantity_delta,
    validate_order_header,
    validate_order_item,
    validate_order_items,
)
from . import access_policy, audit_service
from .concurrency import lock_for_update, run_with_retry
from .totals_service import save_order
from brewops.time_utils import utcnow


# Allowed forward moves; re-setting the current value is always accepted
STATUS_TRANSITIONS = {
    "pending": {"preparing", "cancelled"},
    "preparing": {"served", "cancelled"},
    "served": set(),
    "cancelled": set(),
}
PAYMENT_TRANSITIONS = {
    "unpaid": {"paid"},
    "paid": {"refunded"},
    "refunded": set(),
}

SORT_FIELDS = {
    "created_at": Order.created_at,
    "updated_at": Order.updated_at,
    "total_cents": Order.total_cents,
    "subtotal_cents": Order.subtotal_cents,
    "customer_name": Order.customer_name,
    "status": Order.status,
    "payment_status": Order.payment_status,
}


# ---------------------------------------------------------------------------
# Loading and guards
# ---------------------------------------------------------------------------

def _get_live_shop(shop_id: int) -> Shop:
    shop = db.session.get(Shop, shop_id)
    if not shop or shop.archived:
        raise ShopNotFound("Coffee shop not found.")
    return shop


def _require_orderable(actor: User, shop: Shop) -> None:
    if access_policy.can_order_from_shop(actor, shop):
        return
    if shop.owner_id == actor.id:
        raise NotOrderable("You cannot place orders in your own shop.")
    raise NotOrderable("Users can only order from open shops.")


def _get_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFound("Order not found.")
    return order


def _get_accessible_order(actor: User, order_id: int) -> Order:
    order = _get_order(order_id)
    if not access_policy.can_access_order(actor, order):
        raise Forbidden("Order access denied.")
    return order


def _reload_order(order_id: int) -> Order:
    """Drop every cached row and read the aggregate back from the database."""
    db.session.expire_all()
    order = db.session.query(Order).filter_by(id=order_id).first()
    if not order:
        raise NotFound("Order not found.")
    return order


def _require_cashier(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise ValidationError("cashier_id does not match an active user", field="cashier_id")
    return user


def _check_transition(current: str, target: str, transitions: dict, field_name: str) -> None:
    if current == target:
        return
    if target not in transitions.get(current, set()):
        raise Conflict(
            f"Cannot change {field_name} from {current} to {target}.",
            details={"field": field_name, "current": current, "requested": target},
        )


# ---------------------------------------------------------------------------
# Header operations
# ---------------------------------------------------------------------------

def create_order(actor: User, payload: dict) -> Order:
    """
    Open a new order against an orderable shop.

    Administrators may credit any active user as cashier; everyone else is
    their own cashier. The creator is always the actor.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    data = dict(payload)
    raw_items = data.pop("items", None)

    errors: list[dict] = []
    header: dict = {}
    items: list[dict] = []
    try:
        header = validate_order_header(data, partial=False)
    except ValidationError as exc:
        errors.extend(exc.errors or [{"field": "body", "message": exc.message}])
    try:
        items = validate_order_items(raw_items)
    except ValidationError as exc:
        errors.extend(exc.errors)
    if errors:
        raise ValidationError("Validation failed", errors=errors)

    shop = _get_live_shop(header["shop_id"])
    _require_orderable(actor, shop)

    cashier_id = actor.id
    if access_policy.is_admin(actor) and header.get("cashier_id"):
        cashier_id = _require_cashier(header["cashier_id"]).id

    order = Order(
        shop_id=shop.id,
        customer_name=header["customer_name"],
        cashier_id=cashier_id,
        created_by_id=actor.id,
        status=header.get("status") or "pending",
        payment_status=header.get("payment_status") or "unpaid",
        order_type=header.get("order_type") or "takeaway",
        table_number=header.get("table_number") or "",
        discount_cents=header.get("discount_cents") or 0,
        tax_cents=header.get("tax_cents") or 0,
        currency=header.get("currency") or "USD",
    )
    order.items = [OrderItem(**item) for item in items]

    save_order(order)

    audit_service.record_activity(
        actor_id=actor.id,
        action="create_order",
        entity_type="order",
        entity_id=order.id,
        metadata={"shop_id": shop.id, "cashier_id": cashier_id, "item_count": len(items)},
    )
    return order


def list_orders(actor: User, args) -> dict:
    """
    Page through orders visible to the actor.

    Non-administrators only ever see orders they created. The total is
    counted from the same filtered query as the page.
    """
    page, limit = parse_pagination(args, current_app.config.get("ORDER_PAGE_MAX_LIMIT", 100))

    query = db.session.query(Order)
    if not access_policy.is_admin(actor):
        query = query.filter(Order.created_by_id == actor.id)

    if args.get("shop_id"):
        shop = _get_live_shop(parse_id(args.get("shop_id"), "shop_id"))
        _require_orderable(actor, shop)
        query = query.filter(Order.shop_id == shop.id)

    if args.get("status"):
        query = query.filter(Order.status == parse_choice(args.get("status"), "status", ORDER_STATUSES))

    if args.get("payment_status"):
        query = query.filter(
            Order.payment_status == parse_choice(args.get("payment_status"), "payment_status", PAYMENT_STATUSES)
        )

    if args.get("cashier_id"):
        query = query.filter(Order.cashier_id == parse_id(args.get("cashier_id"), "cashier_id"))

    search = (args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                Order.customer_name.ilike(pattern),
                Order.items.any(OrderItem.menu_item_name.ilike(pattern)),
            )
        )

    sort_by = args.get("sort_by") or "created_at"
    if sort_by not in SORT_FIELDS:
        raise ValidationError(f"sort_by must be one of: {', '.join(SORT_FIELDS)}", field="sort_by")
    sort_order = (args.get("sort_order") or "desc").lower()
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sort_order must be asc or desc", field="sort_order")

    sort_col = SORT_FIELDS[sort_by]
    if sort_order == "asc":
        ordering = (sort_col.asc(), Order.id.asc())
    else:
        ordering = (sort_col.desc(), Order.id.desc())

    total = query.order_by(None).count()
    orders = query.order_by(*ordering).offset((page - 1) * limit).limit(limit).all()

    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if total else 0,
        "items": orders,
    }


def get_order(actor: User, order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFound("Order not found.")
    if not access_policy.can_access_order(actor, order):
        raise Forbidden("Order access denied.")
    return order


def update_order(actor: User, order_id: int, payload: dict) -> Order:
    """
    Apply the header fields present in the payload.

    Totals are recomputed even when only non-financial fields change, so an
    item mutation that raced this update can't leave the totals behind.
    """
    patch = validate_order_header(payload, partial=True)

    def _update():
        order = _get_order(order_id)
        if not access_policy.can_access_order(actor, order):
            raise Forbidden("You cannot update this order.")

        if "status" in patch:
            _check_transition(order.status, patch["status"], STATUS_TRANSITIONS, "status")
        if "payment_status" in patch:
            _check_transition(order.payment_status, patch["payment_status"], PAYMENT_TRANSITIONS, "payment_status")
        if "cashier_id" in patch:
            _require_cashier(patch["cashier_id"])

        for key, value in patch.items():
            setattr(order, key, value)

        return save_order(order)

    order = run_with_retry(_update)

    audit_service.record_activity(
        actor_id=actor.id,
        action="update_order",
        entity_type="order",
        entity_id=order_id,
        metadata=patch,
    )
    return order


def delete_order(actor: User, order_id: int) -> None:
    """Hard delete. Items and notes go with the order; there is no undo."""
    def _delete():
        order = _get_order(order_id)
        if not access_policy.can_access_order(actor, order):
            raise Forbidden("You cannot delete this order.")
        shop_id = order.shop_id
        db.session.delete(order)
        db.session.commit()
        return shop_id

    shop_id = run_with_retry(_delete)

    audit_service.record_activity(
        actor_id=actor.id,
        action="delete_order",
        entity_type="order",
        entity_id=order_id,
        metadata={"shop_id": shop_id},
    )


# ---------------------------------------------------------------------------
# Embedded items
# ---------------------------------------------------------------------------

def add_order_item(actor: User, order_id: int, payload: dict) -> tuple[Order, int]:
    """Append one item with a freshly generated id. Returns (order, item_id)."""
    item_data = validate_order_item(payload)

    def _add():
        _get_accessible_order(actor, order_id)

        now = utcnow()
        item = OrderItem(order_id=order_id, created_at=now, updated_at=now, **item_data)
        db.session.add(item)
        db.session.flush()
        item_id = item.id

        order = _reload_order(order_id)
        return save_order(order), item_id

    order, item_id = run_with_retry(_add)

    audit_service.record_activity(
        actor_id=actor.id,
        action="add_order_item",
        entity_type="order",
        entity_id=order_id,
        metadata={
            "item_id": item_id,
            "menu_item_name": item_data["menu_item_name"],
            "quantity": item_data["quantity"],
            "unit_price_cents": item_data["unit_price_cents"],
        },
    )
    return order, item_id


def adjust_item_quantity(actor: User, order_id: int, item_id: int, delta) -> Order:
    """
    Increment one item's quantity by a signed delta.

    A delta that would leave the quantity below one is rejected, never
    clamped, and nothing is written.
    """
    delta = parse_quantity_delta(delta, current_app.config.get("ORDER_ITEM_MAX_DELTA", 20))

    def _adjust():
        order = _get_accessible_order(actor, order_id)

        item = order.find_item(item_id)
        if not item:
            raise ItemNotFound("Order item not found.")

        next_quantity = item.quantity + delta
        if next_quantity < 1:
            raise InvalidQuantity(
                "Resulting quantity must be at least 1.",
                details={"item_id": item_id, "current_quantity": item.quantity, "delta": delta},
            )

        result = db.session.execute(
            update(OrderItem)
            .where(
                OrderItem.id == item_id,
                OrderItem.order_id == order_id,
                OrderItem.quantity + delta >= 1,
            )
            .values(quantity=OrderItem.quantity + delta, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # Row changed between the read and the increment
            still_there = (
                db.session.query(OrderItem.id)
                .filter(OrderItem.id == item_id, OrderItem.order_id == order_id)
                .first()
            )
            db.session.rollback()
            if still_there is None:
                raise ItemNotFound("Order item not found.")
            raise InvalidQuantity(
                "Resulting quantity must be at least 1.",
                details={"item_id": item_id, "delta": delta},
            )

        order = _reload_order(order_id)
        return save_order(order)

    order = run_with_retry(_adjust)

    audit_service.record_activity(
        actor_id=actor.id,
        action="adjust_order_item_quantity",
        entity_type="order",
        entity_id=order_id,
        metadata={"item_id": item_id, "delta": delta},
    )
    return order


def set_item_status(actor: User, order_id: int, item_id: int, item_status) -> Order:
    item_status = parse_choice(item_status, "item_status", ITEM_STATUSES)

    def _set_status():
        _get_accessible_order(actor, order_id)

        result = db.session.execute(
            update(OrderItem)
            .where(OrderItem.id == item_id, OrderItem.order_id == order_id)
            .values(item_status=item_status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.session.rollback()
            raise ItemNotFound("Order item not found.")

        # Status doesn't feed totals; the save still recomputes them
        order = _reload_order(order_id)
        return save_order(order)

    order = run_with_retry(_set_status)

    audit_service.record_activity(
        actor_id=actor.id,
        action="update_order_item_status",
        entity_type="order",
        entity_id=order_id,
        metadata={"item_id": item_id, "item_status": item_status},
    )
    return order


def remove_order_item(actor: User, order_id: int, item_id: int) -> Order:
    """Remove one item by id. Removing an absent item is a successful no-op."""
    def _remove():
        _get_accessible_order(actor, order_id)

        result = db.session.execute(
            delete(OrderItem)
            .where(OrderItem.id == item_id, OrderItem.order_id == order_id)
            .execution_options(synchronize_session=False)
        )
        removed = result.rowcount > 0

        order = _reload_order(order_id)
        return save_order(order), removed

    order, removed = run_with_retry(_remove)

    audit_service.record_activity(
        actor_id=actor.id,
        action="remove_order_item",
        entity_type="order",
        entity_id=order_id,
        metadata={"item_id": item_id, "removed": removed},
    )
    return order


# ---------------------------------------------------------------------------
# Embedded notes
# ---------------------------------------------------------------------------

def add_order_note(actor: User, order_id: int, text) -> Order:
    text = parse_note_text(text)

    def _add_note():
        _get_accessible_order(actor, order_id)

        now = utcnow()
        note = OrderNote(order_id=order_id, author_id=actor.id, text=text, created_at=now, updated_at=now)
        db.session.add(note)
        db.session.flush()
        note_id = note.id

        order = _reload_order(order_id)
        return save_order(order), note_id

    order, note_id = run_with_retry(_add_note)

    audit_service.record_activity(
        actor_id=actor.id,
        action="add_order_note",
        entity_type="order",
        entity_id=order_id,
        metadata={"note_id": note_id},
    )
    return order


def remove_order_note(actor: User, order_id: int, note_id: int) -> Order:
    """Remove one note by id. Removing an absent note is a successful no-op."""
    def _remove_note():
        _get_accessible_order(actor, order_id)

        result = db.session.execute(
            delete(OrderNote)
            .where(OrderNote.id == note_id, OrderNote.order_id == order_id)
            .execution_options(synchronize_session=False)
        )
        removed = result.rowcount > 0

        order = _reload_order(order_id)
        return save_order(order), removed

    order, removed = run_with_retry(_remove_note)

    audit_service.record_activity(
        actor_id=actor.id,
        action="remove_order_note",
        entity_type="order",
        entity_id=order_id,
        metadata={"note_id": note_id, "removed": removed},
    )
    return order
