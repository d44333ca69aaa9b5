# Overview: Flask API routes for sales analytics; read-only aggregates.

from flask import Blueprint, jsonify, g

from ..decorators import require_auth, require_analytics_access
from ..services import analytics_service
from ..validation import parse_id


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/v1/analytics")


@analytics_bp.get("/shops/<shop_id>/summary")
@require_auth
@require_analytics_access
def shop_summary(shop_id: str):
    """
    Order status and payment breakdowns, revenue metrics, top five
    products and hourly demand for one shop.
    """
    summary = analytics_service.shop_sales_summary(g.current_user, parse_id(shop_id, "shop_id"))
    return jsonify(summary), 200


@analytics_bp.get("/staff/performance")
@require_auth
@require_analytics_access
def staff_performance():
    return jsonify(analytics_service.staff_performance(g.current_user)), 200
