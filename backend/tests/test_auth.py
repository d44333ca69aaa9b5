"""
Authentication and session tests.

Verifies:
- Registration (password strength, duplicate email, admin key)
- Login / logout / me
- Idle and absolute session timeouts
- Admin-only user management
"""

from datetime import timedelta

import pytest

from brewops.extensions import db
from brewops.errors import Conflict
from brewops.models import SessionToken
from brewops.services import auth_service, session_service
from brewops.services.auth_service import PasswordValidationError, validate_password_strength
from brewops.time_utils import utcnow

PASSWORD = "Password123!"


class TestPasswordStrength:

    @pytest.mark.parametrize(
        "password",
        ["Short1!", "alllowercase1!", "ALLUPPERCASE1!", "NoDigitsHere!", "NoSpecial123"],
    )
    def test_weak_passwords_rejected(self, password):
        with pytest.raises(PasswordValidationError):
            validate_password_strength(password)

    def test_strong_password_accepted(self):
        validate_password_strength(PASSWORD)


class TestRegistration:

    def test_register_returns_token(self, client, db_session):
        resp = client.post("/api/v1/auth/register", json={
            "full_name": "Nina Brew",
            "email": "Nina@Brewops.test",
            "password": PASSWORD,
        })
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["user"]["email"] == "nina@brewops.test"
        assert body["user"]["role"] == "user"
        assert len(body["token"]) == 64

    def test_admin_key_grants_admin(self, app, db_session):
        user = auth_service.register_user(
            "Ada Admin", "ada@brewops.test", PASSWORD, admin_key=app.config["ADMIN_REGISTRATION_KEY"]
        )
        assert user.role == "admin"

    def test_wrong_admin_key_is_plain_user(self, db_session):
        user = auth_service.register_user("Bo User", "bo@brewops.test", PASSWORD, admin_key="guess")
        assert user.role == "user"

    def test_duplicate_email_conflicts(self, db_session, customer):
        with pytest.raises(Conflict):
            auth_service.register_user("Copy Cat", customer.email, PASSWORD)

    def test_weak_password_is_400(self, client, db_session):
        resp = client.post("/api/v1/auth/register", json={
            "full_name": "Weak Willy",
            "email": "weak@brewops.test",
            "password": "password",
        })
        assert resp.status_code == 400
        assert resp.get_json()["errors"][0]["field"] == "password"


class TestLoginLogout:

    def test_login_and_me(self, client, customer):
        resp = client.post("/api/v1/auth/login", json={"email": customer.email, "password": PASSWORD})
        assert resp.status_code == 200
        token = resp.get_json()["token"]

        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.get_json()["user"]["id"] == customer.id

    def test_bad_credentials_401(self, client, customer):
        resp = client.post("/api/v1/auth/login", json={"email": customer.email, "password": "Wrong123!"})
        assert resp.status_code == 401

    def test_missing_fields_400(self, client, db_session):
        resp = client.post("/api/v1/auth/login", json={"email": "x@brewops.test"})
        assert resp.status_code == 400

    def test_inactive_user_cannot_login(self, client, make_user):
        sleeper = make_user("sleeper", is_active=False)
        resp = client.post("/api/v1/auth/login", json={"email": sleeper.email, "password": PASSWORD})
        assert resp.status_code == 401

    def test_logout_revokes_token(self, client, customer, auth_headers):
        headers = auth_headers(customer)
        assert client.post("/api/v1/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401


class TestSessionTimeouts:

    def test_idle_session_is_revoked(self, db_session, customer):
        session, token = session_service.create_session(customer.id)
        session.last_used_at = utcnow() - timedelta(hours=3)
        db.session.commit()

        assert session_service.validate_session(token) is None
        assert db.session.get(SessionToken, session.id).revoked_reason == "Idle timeout"

    def test_expired_session_is_rejected(self, db_session, customer):
        session, token = session_service.create_session(customer.id)
        session.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        assert session_service.validate_session(token) is None

    def test_cleanup_removes_old_revoked_sessions(self, db_session, customer):
        session, token = session_service.create_session(customer.id)
        session_service.revoke_session(token)
        session.created_at = utcnow() - timedelta(days=45)
        db.session.commit()

        assert session_service.cleanup_expired_sessions(retention_days=30) == 1


class TestUserAdministration:

    def test_users_list_is_admin_only(self, client, customer, admin, auth_headers):
        assert client.get("/api/v1/users", headers=auth_headers(customer)).status_code == 403
        resp = client.get("/api/v1/users", headers=auth_headers(admin))
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 2

    def test_set_role(self, client, customer, admin, auth_headers):
        resp = client.patch(
            f"/api/v1/users/{customer.id}/role", json={"role": "admin"}, headers=auth_headers(admin)
        )
        assert resp.status_code == 200
        assert resp.get_json()["user"]["role"] == "admin"

    def test_set_unknown_role(self, client, customer, admin, auth_headers):
        resp = client.patch(
            f"/api/v1/users/{customer.id}/role", json={"role": "wizard"}, headers=auth_headers(admin)
        )
        assert resp.status_code == 400

    def test_activity_feed(self, client, customer, admin, auth_headers):
        client.patch(f"/api/v1/users/{customer.id}/role", json={"role": "admin"}, headers=auth_headers(admin))
        resp = client.get("/api/v1/activity?entity_type=user", headers=auth_headers(admin))
        assert resp.status_code == 200
        assert resp.get_json()["activity"][0]["action"] == "set_user_role"
