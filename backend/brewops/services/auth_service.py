# Overview: Service-layer operations for user accounts; registration, login, roles.

"""
Authentication Service

WHY: Every order and shop action is attributed to a user. Uses bcrypt for
password hashing and validates password strength at creation time.
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..errors import Conflict, NotFound, ValidationError
from ..models import User
from ..models.auth import USER_ROLES, ROLE_ADMIN, ROLE_USER
from brewops.time_utils import utcnow

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""

    def __init__(self, message: str):
        super().__init__(message, field="password")


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if len(password) > 100:
        raise PasswordValidationError("Password must be at most 100 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Cost factor comes from BCRYPT_ROUNDS (12 by default; tests lower it).
    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except (ValueError, TypeError):
        return False


def _normalize_email(email) -> str:
    if not isinstance(email, str) or not EMAIL_PATTERN.match(email.strip()):
        raise ValidationError("A valid email is required", field="email")
    return email.strip().lower()


def _validate_full_name(full_name) -> str:
    if not isinstance(full_name, str) or not 2 <= len(full_name.strip()) <= 120:
        raise ValidationError("full_name must be between 2 and 120 characters", field="full_name")
    return full_name.strip()


def create_user(full_name: str, email: str, password: str, role: str = ROLE_USER) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises Conflict if the email is already registered.
    """
    full_name = _validate_full_name(full_name)
    email = _normalize_email(email)
    if role not in USER_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(USER_ROLES)}", field="role")

    existing = db.session.query(User).filter_by(email=email).first()
    if existing:
        raise Conflict("Email already in use.")

    user = User(
        full_name=full_name,
        email=email,
        password_hash=hash_password(password),
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    return user


def register_user(full_name: str, email: str, password: str, admin_key: str | None = None) -> User:
    """Self-registration. The configured admin key grants the admin role."""
    expected_key = current_app.config.get("ADMIN_REGISTRATION_KEY")
    role = ROLE_ADMIN if admin_key and expected_key and admin_key == expected_key else ROLE_USER
    return create_user(full_name, email, password, role=role)


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate user with email and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    if not isinstance(email, str) or not isinstance(password, str):
        return None

    user = db.session.query(User).filter(
        User.email == email.strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.created_at.desc(), User.id.desc()).all()


def set_user_role(user_id: int, role: str) -> User:
    if role not in USER_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(USER_ROLES)}", field="role")
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound("User not found.")
    user.role = role
    db.session.commit()
    return user
