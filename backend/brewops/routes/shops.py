# Overview: Flask API routes for the coffee shop registry; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request, g

from ..decorators import require_auth
from ..services import shop_service
from ..validation import parse_id


shops_bp = Blueprint("shops", __name__, url_prefix="/api/v1/shops")


@shops_bp.post("")
@require_auth
def create_shop():
    shop = shop_service.create_shop(g.current_user, request.get_json(silent=True))
    return jsonify(shop.to_dict()), 201


@shops_bp.get("")
@require_auth
def list_shops():
    """
    Query params: page, limit, status, city, owner_id, search.
    Administrators may also pass include_archived or archived.
    """
    result = shop_service.list_shops(g.current_user, request.args)
    result["items"] = [shop.to_dict() for shop in result["items"]]
    return jsonify(result), 200


@shops_bp.get("/<shop_id>")
@require_auth
def get_shop(shop_id: str):
    shop = shop_service.get_shop(g.current_user, parse_id(shop_id, "shop_id"))
    return jsonify(shop.to_dict()), 200


@shops_bp.patch("/<shop_id>")
@require_auth
def update_shop(shop_id: str):
    shop = shop_service.update_shop(
        g.current_user, parse_id(shop_id, "shop_id"), request.get_json(silent=True)
    )
    return jsonify(shop.to_dict()), 200


@shops_bp.delete("/<shop_id>")
@require_auth
def archive_shop(shop_id: str):
    shop = shop_service.archive_shop(g.current_user, parse_id(shop_id, "shop_id"))
    return jsonify({"message": "Coffee shop archived.", "shop": shop.to_dict()}), 200


@shops_bp.post("/<shop_id>/staff")
@require_auth
def add_staff(shop_id: str):
    shop = shop_service.add_staff(
        g.current_user, parse_id(shop_id, "shop_id"), request.get_json(silent=True)
    )
    return jsonify(shop.to_dict()), 201


@shops_bp.delete("/<shop_id>/staff/<user_id>")
@require_auth
def remove_staff(shop_id: str, user_id: str):
    shop = shop_service.remove_staff(
        g.current_user, parse_id(shop_id, "shop_id"), parse_id(user_id, "user_id")
    )
    return jsonify(shop.to_dict()), 200
