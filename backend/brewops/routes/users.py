# Overview: Flask API routes for admin user management and the activity feed.

from flask import Blueprint, jsonify, request, g

from ..decorators import require_auth, require_admin
from ..models.activity import ENTITY_TYPES
from ..services import auth_service, audit_service
from ..validation import parse_choice, parse_id

users_bp = Blueprint("users", __name__, url_prefix="/api/v1")


@users_bp.get("/users")
@require_auth
@require_admin
def list_users():
    users = auth_service.list_users()
    return jsonify({"users": [user.to_dict() for user in users], "count": len(users)}), 200


@users_bp.patch("/users/<user_id>/role")
@require_auth
@require_admin
def set_user_role(user_id: str):
    data = request.get_json(silent=True) or {}
    user = auth_service.set_user_role(parse_id(user_id, "user_id"), data.get("role"))
    audit_service.record_activity(
        actor_id=g.current_user.id,
        action="set_user_role",
        entity_type="user",
        entity_id=user.id,
        metadata={"role": user.role},
    )
    return jsonify({"user": user.to_dict()}), 200


@users_bp.get("/activity")
@require_auth
@require_admin
def list_activity():
    """
    Query params:
    - entity_type: shop | order | user
    - entity_id: int
    - actor_id: int
    """
    args = request.args
    entries = audit_service.list_activity(
        entity_type=parse_choice(args["entity_type"], "entity_type", ENTITY_TYPES) if args.get("entity_type") else None,
        entity_id=parse_id(args["entity_id"], "entity_id") if args.get("entity_id") else None,
        actor_id=parse_id(args["actor_id"], "actor_id") if args.get("actor_id") else None,
    )
    return jsonify({"activity": [entry.to_dict() for entry in entries], "count": len(entries)}), 200
