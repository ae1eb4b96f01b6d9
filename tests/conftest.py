"""
Shared pytest fixtures for the QMS Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user: factory creating a user with role names
    - headers_for: Authorization headers for a user
    - admin / manager / auditor / member: ready-made users
"""

import pytest

from qms import create_app
from qms.models import db as _db
from qms.models.auth import User
from qms.services.jwt_service import generate_token_pair
from qms.services.user_service import seed_roles, set_user_roles
from qms.utils.crypto import hash_password

DEFAULT_PASSWORD = "Passw0rd!23"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, seed roles, rollback and recreate tables after."""
    with app.app_context():
        seed_roles()
        _db.session.commit()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users & tokens ───────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: ``make_user("a@acme.com", roles=["manager"])`` → committed User."""
    counter = {"n": 0}

    def _make(email=None, roles=("user",), password=DEFAULT_PASSWORD, **fields):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@acme.com",
            password_hash=hash_password(password),
            first_name=fields.pop("first_name", "Test"),
            last_name=fields.pop("last_name", f"User{counter['n']}"),
            **fields,
        )
        _db.session.add(user)
        _db.session.flush()
        set_user_roles(user.id, list(roles), None, audit=False)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def headers_for():
    """Bearer headers for ``user`` carrying its current role names."""

    def _headers(user):
        tokens = generate_token_pair(user.id, user.role_names, user.email)
        return {"Authorization": f"Bearer {tokens['accessToken']}"}

    return _headers


@pytest.fixture()
def admin(make_user):
    return make_user("admin@acme.com", roles=["admin"])


@pytest.fixture()
def superuser(make_user):
    return make_user("root@acme.com", roles=["superuser"])


@pytest.fixture()
def manager(make_user):
    return make_user("manager@acme.com", roles=["manager"])


@pytest.fixture()
def auditor(make_user):
    return make_user("auditor@acme.com", roles=["auditor"])


@pytest.fixture()
def member(make_user):
    return make_user("member@acme.com", roles=["user"])


@pytest.fixture()
def admin_headers(admin, headers_for):
    return headers_for(admin)


@pytest.fixture()
def manager_headers(manager, headers_for):
    return headers_for(manager)


@pytest.fixture()
def auditor_headers(auditor, headers_for):
    return headers_for(auditor)


@pytest.fixture()
def member_headers(member, headers_for):
    return headers_for(member)


@pytest.fixture()
def password():
    """Plain-text password of every ``make_user`` account."""
    return DEFAULT_PASSWORD
