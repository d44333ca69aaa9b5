# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, g, current_app

from .errors import Forbidden, Unauthenticated
from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a valid bearer session.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object
    - g.session_token: The raw bearer token (needed for logout)

    Raises Unauthenticated (401) if:
    - No Authorization header
    - Invalid, expired or idle-timed-out token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            raise Unauthenticated("Authentication required")

        token = auth_header.split(" ", 1)[1].strip()

        context = session_service.validate_session(token)

        if not context:
            raise Unauthenticated("Invalid or expired token")

        g.current_user = context.user
        g.session_context = context
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Must be applied after @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            raise Unauthenticated("Authentication required")

        if not g.current_user.is_admin:
            raise Forbidden("Administrator access required")

        return f(*args, **kwargs)

    return decorated_function


def require_analytics_access(f):
    """
    Analytics gate. Administrators only while ANALYTICS_ADMIN_ONLY is set;
    otherwise any authenticated user, leaving shop checks to the service.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            raise Unauthenticated("Authentication required")

        if current_app.config.get("ANALYTICS_ADMIN_ONLY", True) and not g.current_user.is_admin:
            raise Forbidden("Administrator access required")

        return f(*args, **kwargs)

    return decorated_function
