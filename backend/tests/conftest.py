"""
Pytest fixtures for BrewOps backend tests.

Provides test database setup, user/shop factories, and test client.
"""

import pytest
from brewops import create_app
from brewops.extensions import db
from brewops.models import User, Shop, ShopStaff
from brewops.services.auth_service import hash_password
from brewops.services import session_service

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: make_user("ann", role="admin") -> User."""
    def _make_user(name: str, role: str = "user", is_active: bool = True) -> User:
        user = User(
            full_name=f"{name.title()} Tester",
            email=f"{name}@brewops.test",
            password_hash=hash_password(PASSWORD),
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture(scope='function')
def make_shop(db_session):
    """Factory: make_shop(owner, status="open", archived=False) -> Shop."""
    def _make_shop(owner: User, name: str = "Bean There", status: str = "open", archived: bool = False) -> Shop:
        shop = Shop(
            name=name,
            description="Neighbourhood espresso bar",
            owner_id=owner.id,
            status=status,
            city="Lisbon",
            address="Rua Augusta 12",
            archived=archived,
        )
        shop.staff = [ShopStaff(user_id=owner.id, role="owner")]
        db_session.add(shop)
        db_session.commit()
        return shop

    return _make_shop


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user("admin", role="admin")


@pytest.fixture(scope='function')
def owner(make_user):
    return make_user("owner")


@pytest.fixture(scope='function')
def customer(make_user):
    return make_user("customer")


@pytest.fixture(scope='function')
def shop(make_shop, owner):
    return make_shop(owner)


@pytest.fixture(scope='function')
def auth_headers(db_session):
    """Factory: auth_headers(user) issues a session and returns the Authorization header."""
    def _auth_headers(user: User) -> dict:
        _, token = session_service.create_session(user.id)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
