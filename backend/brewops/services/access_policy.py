# Overview: Pure access predicates for orders and shops.

"""
Access Policy

Every order and shop endpoint goes through these predicates. They read
only the objects passed in, so they can be re-evaluated on every call and
tested without a database.
"""

from __future__ import annotations


def is_admin(actor) -> bool:
    return bool(actor) and actor.role == "admin"


def can_manage_shop(actor, shop) -> bool:
    """Administrator or the shop's registered owner."""
    if not actor or not shop:
        return False
    if is_admin(actor):
        return True
    return shop.owner_id == actor.id


def is_shop_staff(actor, shop) -> bool:
    """Anyone who can manage the shop, or a listed staff member."""
    if not actor or not shop:
        return False
    if can_manage_shop(actor, shop):
        return True
    return any(member.user_id == actor.id for member in shop.staff)


def can_order_from_shop(actor, shop) -> bool:
    """
    Archived shops take no orders. Administrators may order from any live
    shop; everyone else needs an open shop they do not own.
    """
    if not actor or not shop or shop.archived:
        return False
    if is_admin(actor):
        return True
    if shop.owner_id == actor.id:
        return False
    return shop.status == "open"


def can_access_order(actor, order) -> bool:
    """Administrator, the order's creator, or its cashier."""
    if not actor or not order:
        return False
    if is_admin(actor):
        return True
    return actor.id in (order.created_by_id, order.cashier_id)
