"""
Shared pytest fixtures for the Work-Item Lineage Service test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - events: Fresh in-memory event backend per test (autouse)
    - client: Flask test client (function-scoped)
    - ceo / manager / director / contributor / outsider: Principals
    - auth_headers: Bearer header factory for a Principal

Testing config has no POLICY_SERVICE_URL, so every authorization decision
goes through the local fallback role table.
"""

import pytest

from workitems import create_app
from workitems.core.principal import Principal
from workitems.models import db as _db
from workitems.services.event_emitter import MemoryEventBackend, event_emitter
from workitems.services.jwt_service import issue_access_token

TENANT_ID = "11111111-1111-1111-1111-111111111111"
OTHER_TENANT_ID = "22222222-2222-2222-2222-222222222222"


def make_principal(user_id, *roles, tenant_id=TENANT_ID):
    return Principal(
        id=user_id,
        email=f"{user_id}@example.com",
        tenant_id=tenant_id,
        roles=frozenset(roles),
    )


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


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
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture(autouse=True)
def events(app):
    """Swap in a clean recording backend so each test sees only its own events."""
    original = event_emitter.backend
    backend = MemoryEventBackend()
    event_emitter.backend = backend
    yield backend
    event_emitter.backend = original


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Principals ───────────────────────────────────────────────────────────


@pytest.fixture()
def principal_factory():
    """Return make_principal(user_id, *roles, tenant_id=TENANT_ID)."""
    return make_principal


@pytest.fixture()
def ceo():
    return make_principal("user-ceo", "CEO")


@pytest.fixture()
def director():
    return make_principal("user-director", "Director")


@pytest.fixture()
def manager():
    return make_principal("user-manager", "Manager")


@pytest.fixture()
def contributor():
    return make_principal("user-contributor", "Contributor")


@pytest.fixture()
def outsider():
    """CEO of a different tenant."""
    return make_principal("user-outsider", "CEO", tenant_id=OTHER_TENANT_ID)


@pytest.fixture()
def auth_headers(app):
    """Return a factory: auth_headers(principal) -> Authorization header dict."""

    def _headers(principal):
        return {"Authorization": f"Bearer {issue_access_token(principal)}"}

    return _headers
