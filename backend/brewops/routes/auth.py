# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/brewops/routes/auth.py
"""
Authentication API routes

- Password strength validation on registration
- Session management with hashed bearer tokens
"""

from flask import Blueprint, request, jsonify, g

from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


def _session_response(user, status_code: int, message: str):
    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return jsonify({
        "user": user.to_dict(),
        "token": token,
        "session": session.to_dict(),
        "message": message,
    }), status_code


@auth_bp.post("/register")
def register_route():
    """
    Self-registration. Supplying the configured admin key grants the admin
    role. The response carries a session token so the client is logged in.
    """
    data = request.get_json(silent=True) or {}

    user = auth_service.register_user(
        full_name=data.get("full_name"),
        email=data.get("email"),
        password=data.get("password"),
        admin_key=data.get("admin_key"),
    )

    return _session_response(user, 201, "Registration successful")


@auth_bp.post("/login")
def login_route():
    """Returns user info and session token on success."""
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    password = data.get("password")

    if not all([email, password]):
        return jsonify({
            "message": "email and password required",
            "errors": [
                {"field": key, "message": f"{key} is required"}
                for key in ("email", "password") if not data.get(key)
            ],
        }), 400

    user = auth_service.authenticate(email, password)
    if not user:
        return jsonify({"message": "Invalid credentials"}), 401

    return _session_response(user, 200, "Login successful")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the bearer token so it cannot be reused."""
    session_service.revoke_session(g.session_token, reason="User logout")
    return jsonify({"message": "Logout successful"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({
        "user": g.current_user.to_dict(),
        "session": g.session_context.session.to_dict(),
    }), 200
