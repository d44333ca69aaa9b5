# Overview: Flask API routes for orders operations; parses input and returns JSON responses.

# backend/brewops/routes/orders.py
"""
Order API routes

Headers, embedded items and embedded notes. Every mutating endpoint
returns the full order with freshly recomputed totals.
"""

from flask import Blueprint, jsonify, request, g

from ..decorators import require_auth
from ..services import order_service
from ..validation import parse_id


orders_bp = Blueprint("orders", __name__, url_prefix="/api/v1/orders")


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


@orders_bp.post("")
@require_auth
def create_order():
    """
    Request body:
    - shop_id: int (required)
    - customer_name: str (required)
    - items: list of {menu_item_name, unit_price_cents, quantity?, size?, modifiers?, item_status?}
    - cashier_id, status, payment_status, order_type, table_number,
      discount_cents, tax_cents, currency (optional)
    """
    order = order_service.create_order(g.current_user, request.get_json(silent=True))
    return jsonify(order.to_dict()), 201


@orders_bp.get("")
@require_auth
def list_orders():
    """
    Query params:
    - page, limit
    - shop_id, status, payment_status, cashier_id, search
    - sort_by, sort_order (asc | desc)
    """
    result = order_service.list_orders(g.current_user, request.args)
    result["items"] = [order.to_dict() for order in result["items"]]
    return jsonify(result), 200


@orders_bp.get("/<order_id>")
@require_auth
def get_order(order_id: str):
    order = order_service.get_order(g.current_user, parse_id(order_id, "order_id"))
    return jsonify(order.to_dict()), 200


@orders_bp.patch("/<order_id>")
@require_auth
def update_order(order_id: str):
    order = order_service.update_order(g.current_user, parse_id(order_id, "order_id"), _json_body())
    return jsonify(order.to_dict()), 200


@orders_bp.delete("/<order_id>")
@require_auth
def delete_order(order_id: str):
    order_service.delete_order(g.current_user, parse_id(order_id, "order_id"))
    return jsonify({"message": "Order deleted."}), 200


# =============================================================================
# ITEMS
# =============================================================================

@orders_bp.post("/<order_id>/items")
@require_auth
def add_item(order_id: str):
    order, item_id = order_service.add_order_item(
        g.current_user, parse_id(order_id, "order_id"), _json_body()
    )
    return jsonify({"item_id": item_id, "order": order.to_dict()}), 201


@orders_bp.patch("/<order_id>/items/<item_id>/quantity")
@require_auth
def adjust_item_quantity(order_id: str, item_id: str):
    """Request body: {"delta": int}, non-zero, bounded by ORDER_ITEM_MAX_DELTA."""
    order = order_service.adjust_item_quantity(
        g.current_user,
        parse_id(order_id, "order_id"),
        parse_id(item_id, "item_id"),
        _json_body().get("delta"),
    )
    return jsonify(order.to_dict()), 200


@orders_bp.patch("/<order_id>/items/<item_id>/status")
@require_auth
def set_item_status(order_id: str, item_id: str):
    order = order_service.set_item_status(
        g.current_user,
        parse_id(order_id, "order_id"),
        parse_id(item_id, "item_id"),
        _json_body().get("item_status"),
    )
    return jsonify(order.to_dict()), 200


@orders_bp.delete("/<order_id>/items/<item_id>")
@require_auth
def remove_item(order_id: str, item_id: str):
    order = order_service.remove_order_item(
        g.current_user, parse_id(order_id, "order_id"), parse_id(item_id, "item_id")
    )
    return jsonify(order.to_dict()), 200


# =============================================================================
# NOTES
# =============================================================================

@orders_bp.post("/<order_id>/notes")
@require_auth
def add_note(order_id: str):
    order = order_service.add_order_note(
        g.current_user, parse_id(order_id, "order_id"), _json_body().get("text")
    )
    return jsonify(order.to_dict()), 201


@orders_bp.delete("/<order_id>/notes/<note_id>")
@require_auth
def remove_note(order_id: str, note_id: str):
    order = order_service.remove_order_note(
        g.current_user, parse_id(order_id, "order_id"), parse_id(note_id, "note_id")
    )
    return jsonify(order.to_dict()), 200
