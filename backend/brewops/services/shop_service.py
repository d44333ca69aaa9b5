# Overview: Coffee shop registry; shop CRUD, archival and staff membership.

"""
Shop Registry Service

Shops are never hard-deleted. Archiving hides a shop from non-administrators
and stops it taking orders, while historical orders keep their shop row.
"""

from __future__ import annotations

import math

from flask import current_app

from ..extensions import db
from ..models import Shop, ShopStaff, User
from ..models.shops import SHOP_STATUSES, STAFF_ROLES
from ..errors import Conflict, Forbidden, NotFound, ShopNotFound, ValidationError
from ..validation import parse_bool_arg, parse_choice, parse_id, parse_pagination, validate_shop
from . import access_policy, audit_service


def _get_shop(shop_id: int) -> Shop:
    shop = db.session.get(Shop, shop_id)
    if not shop:
        raise ShopNotFound("Coffee shop not found.")
    return shop


def create_shop(actor: User, payload: dict) -> Shop:
    """The actor becomes owner and is listed as staff with role owner."""
    data = validate_shop(payload, partial=False)

    shop = Shop(owner_id=actor.id, **data)
    shop.staff = [ShopStaff(user_id=actor.id, role="owner")]
    db.session.add(shop)
    db.session.commit()

    audit_service.record_activity(
        actor_id=actor.id,
        action="create_shop",
        entity_type="shop",
        entity_id=shop.id,
        metadata={"name": shop.name, "city": shop.city},
    )
    return shop


def list_shops(actor: User, args) -> dict:
    page, limit = parse_pagination(args, current_app.config.get("ORDER_PAGE_MAX_LIMIT", 100))

    query = db.session.query(Shop)
    if access_policy.is_admin(actor):
        if args.get("archived") is not None:
            query = query.filter(Shop.archived.is_(parse_bool_arg(args.get("archived"))))
        elif not parse_bool_arg(args.get("include_archived")):
            query = query.filter(Shop.archived.is_(False))
    else:
        query = query.filter(Shop.archived.is_(False))

    if args.get("status"):
        query = query.filter(Shop.status == parse_choice(args.get("status"), "status", SHOP_STATUSES))
    if args.get("city"):
        query = query.filter(Shop.city.ilike(args.get("city").strip()))
    if args.get("owner_id"):
        query = query.filter(Shop.owner_id == parse_id(args.get("owner_id"), "owner_id"))

    search = (args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(db.or_(Shop.name.ilike(pattern), Shop.description.ilike(pattern)))

    total = query.count()
    shops = (
        query.order_by(Shop.created_at.desc(), Shop.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if total else 0,
        "items": shops,
    }


def get_shop(actor: User, shop_id: int) -> Shop:
    shop = _get_shop(shop_id)
    if access_policy.is_admin(actor):
        return shop
    if shop.archived:
        raise ShopNotFound("Coffee shop not found.")
    if shop.status != "open" and not access_policy.is_shop_staff(actor, shop):
        raise Forbidden("Shop is not open.")
    return shop


def update_shop(actor: User, shop_id: int, payload: dict) -> Shop:
    shop = _get_shop(shop_id)
    if not access_policy.can_manage_shop(actor, shop):
        raise Forbidden("You cannot update this shop.")
    if shop.archived and not access_policy.is_admin(actor):
        raise ShopNotFound("Coffee shop not found.")

    patch = validate_shop(payload, partial=True)
    if "archived" in patch and not access_policy.is_admin(actor):
        raise Forbidden("Only administrators can archive shops.")

    for key, value in patch.items():
        setattr(shop, key, value)
    db.session.commit()

    audit_service.record_activity(
        actor_id=actor.id,
        action="update_shop",
        entity_type="shop",
        entity_id=shop.id,
        metadata=patch,
    )
    return shop


def archive_shop(actor: User, shop_id: int) -> Shop:
    if not access_policy.is_admin(actor):
        raise Forbidden("Only administrators can archive shops.")
    shop = _get_shop(shop_id)
    if shop.archived:
        raise Conflict("Coffee shop is already archived.")

    shop.archived = True
    db.session.commit()

    audit_service.record_activity(
        actor_id=actor.id,
        action="archive_shop",
        entity_type="shop",
        entity_id=shop.id,
    )
    return shop


def add_staff(actor: User, shop_id: int, payload: dict) -> Shop:
    shop = _get_shop(shop_id)
    if shop.archived:
        raise ShopNotFound("Coffee shop not found.")
    if not access_policy.can_manage_shop(actor, shop):
        raise Forbidden("You cannot manage staff for this shop.")

    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    user_id = parse_id(payload.get("user_id"), "user_id")
    role = parse_choice(payload.get("role") or "barista", "role", STAFF_ROLES)

    user = db.session.get(User, user_id)
    if not user:
        raise NotFound("User not found.")
    if user_id in shop.staff_user_ids():
        raise Conflict("User is already staff at this shop.")

    shop.staff.append(ShopStaff(user_id=user_id, role=role))
    db.session.commit()

    audit_service.record_activity(
        actor_id=actor.id,
        action="add_shop_staff",
        entity_type="shop",
        entity_id=shop.id,
        metadata={"user_id": user_id, "role": role},
    )
    return shop


def remove_staff(actor: User, shop_id: int, user_id: int) -> Shop:
    """Removing someone who isn't staff is a no-op; the owner can't be removed."""
    shop = _get_shop(shop_id)
    if not access_policy.can_manage_shop(actor, shop):
        raise Forbidden("You cannot manage staff for this shop.")
    if user_id == shop.owner_id:
        raise ValidationError("The shop owner cannot be removed from staff.", field="user_id")

    member = next((m for m in shop.staff if m.user_id == user_id), None)
    if member is not None:
        shop.staff.remove(member)
        db.session.commit()

    audit_service.record_activity(
        actor_id=actor.id,
        action="remove_shop_staff",
        entity_type="shop",
        entity_id=shop.id,
        metadata={"user_id": user_id, "removed": member is not None},
    )
    return shop
