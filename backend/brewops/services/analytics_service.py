# Overview: Read-only sales and staff aggregation over committed orders.

"""
Analytics Engine

Reads committed orders only; nothing here writes. Each facet of the shop
summary is its own aggregate query over the same shop filter, and the
results are combined into one response.

Money sums stay in integer cents. Only the average ticket is rounded
(half-up, whole cents) once, at the end.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import case, extract, func, or_

from ..extensions import db
from ..models import Order, OrderItem, Shop, ShopStaff, User
from ..errors import Forbidden, NotFound
from . import access_policy
from brewops.time_utils import utcnow, to_utc_z

TOP_PRODUCTS_LIMIT = 5


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _status_breakdown(shop_id: int, column, key: str) -> list[dict]:
    count = func.count(Order.id)
    rows = (
        db.session.query(column.label("value"), count.label("count"))
        .filter(Order.shop_id == shop_id)
        .group_by(column)
        .order_by(count.desc(), column.asc())
        .all()
    )
    return [{key: row.value, "count": int(row.count)} for row in rows]


def _revenue_metrics(shop_id: int) -> dict:
    paid_total = case((Order.payment_status == "paid", Order.total_cents), else_=0)
    row = (
        db.session.query(
            func.count(Order.id).label("total_orders"),
            func.coalesce(func.sum(Order.total_cents), 0).label("total_revenue"),
            func.coalesce(func.sum(paid_total), 0).label("paid_revenue"),
        )
        .filter(Order.shop_id == shop_id)
        .one()
    )
    total_orders = int(row.total_orders or 0)
    total_revenue = int(row.total_revenue or 0)
    average = _round_cents(Decimal(total_revenue) / total_orders) if total_orders else 0
    return {
        "total_orders": total_orders,
        "total_revenue_cents": total_revenue,
        "average_ticket_size_cents": average,
        "paid_revenue_cents": int(row.paid_revenue or 0),
    }


def _top_products(shop_id: int, limit: int = TOP_PRODUCTS_LIMIT) -> list[dict]:
    total_quantity = func.sum(OrderItem.quantity)
    rows = (
        db.session.query(
            OrderItem.menu_item_name.label("menu_item_name"),
            total_quantity.label("total_quantity"),
            func.sum(OrderItem.quantity * OrderItem.unit_price_cents).label("total_sales"),
        )
        .join(Order, OrderItem.order_id == Order.id)
        .filter(Order.shop_id == shop_id)
        .group_by(OrderItem.menu_item_name)
        .order_by(total_quantity.desc(), OrderItem.menu_item_name.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "menu_item_name": row.menu_item_name,
            "total_quantity": int(row.total_quantity or 0),
            "total_sales_cents": int(row.total_sales or 0),
        }
        for row in rows
    ]


def _hourly_demand(shop_id: int) -> list[dict]:
    hour = extract("hour", Order.created_at)
    rows = (
        db.session.query(hour.label("hour"), func.count(Order.id).label("order_count"))
        .filter(Order.shop_id == shop_id)
        .group_by(hour)
        .order_by(hour.asc())
        .all()
    )
    return [{"hour": int(row.hour), "order_count": int(row.order_count)} for row in rows]


def shop_sales_summary(actor: User, shop_id: int) -> dict:
    shop = db.session.get(Shop, shop_id)
    if not shop or shop.archived:
        raise NotFound("Coffee shop not found.")
    if not access_policy.is_shop_staff(actor, shop):
        raise Forbidden("Shop access denied.")

    return {
        "shop_id": shop.id,
        "generated_at": to_utc_z(utcnow()),
        "summary": {
            "order_status_breakdown": _status_breakdown(shop.id, Order.status, "status"),
            "payment_status_breakdown": _status_breakdown(shop.id, Order.payment_status, "payment_status"),
            "revenue_metrics": _revenue_metrics(shop.id),
            "top_products": _top_products(shop.id),
            "hourly_demand": _hourly_demand(shop.id),
        },
    }


def staff_performance(actor: User) -> dict:
    """
    Per-cashier order counts and revenue across the shops the actor owns or
    staffs. Scope comes from shop standing, not from the admin role.
    """
    shop_ids = [
        row.id
        for row in db.session.query(Shop.id).filter(
            Shop.archived.is_(False),
            or_(Shop.owner_id == actor.id, Shop.staff.any(ShopStaff.user_id == actor.id)),
        )
    ]
    if not shop_ids:
        return {"generated_at": to_utc_z(utcnow()), "staff": []}

    rows = (
        db.session.query(
            Order.cashier_id.label("cashier_id"),
            Order.status.label("status"),
            func.count(Order.id).label("order_count"),
            func.coalesce(func.sum(Order.total_cents), 0).label("revenue"),
        )
        .filter(Order.shop_id.in_(shop_ids))
        .group_by(Order.cashier_id, Order.status)
        .all()
    )

    per_cashier: dict[int, dict] = {}
    for row in rows:
        entry = per_cashier.setdefault(
            row.cashier_id,
            {"total_orders": 0, "total_revenue_cents": 0, "status_stats": []},
        )
        entry["total_orders"] += int(row.order_count)
        entry["total_revenue_cents"] += int(row.revenue or 0)
        entry["status_stats"].append({"status": row.status, "count": int(row.order_count)})

    users = {
        user.id: user
        for user in db.session.query(User).filter(User.id.in_(list(per_cashier))).all()
    }

    staff = []
    for cashier_id, entry in per_cashier.items():
        user = users.get(cashier_id)
        if user is None:
            continue
        entry["status_stats"].sort(key=lambda stat: (-stat["count"], stat["status"]))
        staff.append({
            "user_id": user.id,
            "full_name": user.full_name,
            "email": user.email,
            **entry,
        })

    staff.sort(key=lambda row: (-row["total_revenue_cents"], row["user_id"]))
    return {"generated_at": to_utc_z(utcnow()), "staff": staff}
