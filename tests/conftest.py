"""
Shared pytest fixtures for the Agency Compliance Portal test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - clock / cm_store: fresh CM session store on a controllable clock (autouse)
    - client: Flask test client (function-scoped)
    - agency, other_agency, admin, super_admin, auditor, cm_user: seeded users
    - identity_for / auth_headers: turn a User into an Identity or a Bearer header
"""

from datetime import datetime, timedelta, timezone

import pytest

from app import create_app
from app.auth import Identity
from app.models import db as _db
from app.models.auth import (
    ROLE_ADMIN,
    ROLE_AUDITOR,
    ROLE_COLLECTION_MANAGER,
    ROLE_SUPER_ADMIN,
    ROLE_USER,
)
from app.services import cache_service
from app.services.cm_session_store import CMSessionStore
from app.services.jwt_service import generate_access_token
from app.services.user_service import create_user

CM_PASSWORD = "Cm-Secret-123"


class FakeClock:
    """Deterministic clock for CM session expiry tests."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


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
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Ids are reused after each recreate; cached listings would leak
        cache_service.clear_all()
        yield
        cache_service.clear_all()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def cm_store(app, clock):
    """Fresh CM session store per test; timers off, time driven by ``clock``."""
    previous = app.extensions["cm_sessions"]
    store = CMSessionStore(timeout_minutes=15, clock=clock, use_timers=False)
    app.extensions["cm_sessions"] = store
    yield store
    store.shutdown()
    app.extensions["cm_sessions"] = previous


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users ────────────────────────────────────────────────────────────────


@pytest.fixture()
def agency():
    return create_user("agency@alphacollections.com", "Alpha Collections", ROLE_USER)


@pytest.fixture()
def other_agency():
    return create_user("ops@betarecoveries.com", "Beta Recoveries", ROLE_USER)


@pytest.fixture()
def admin():
    return create_user("admin@compliance-portal.com", "Portal Admin", ROLE_ADMIN)


@pytest.fixture()
def super_admin():
    return create_user("root@compliance-portal.com", "Super Admin", ROLE_SUPER_ADMIN)


@pytest.fixture()
def auditor():
    return create_user("auditor@compliance-portal.com", "Auditor", ROLE_AUDITOR)


@pytest.fixture()
def cm_user():
    return create_user(
        "chitra.menon@axisbank-collections.com", "Chitra Menon", ROLE_COLLECTION_MANAGER, CM_PASSWORD,
        designation="Senior Collection Manager", employee_id="CM-042",
        products_assigned=["Personal Loan"],
    )


# ── Identity helpers ─────────────────────────────────────────────────────


def _identity(user):
    return Identity(user_id=user.id, role=user.role, name=user.name, email=user.email)


@pytest.fixture()
def identity_for():
    return _identity


@pytest.fixture()
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user.id, user.role)}"}
    return _headers


# ── Form payload helpers ─────────────────────────────────────────────────


def _visit_rows(n=3):
    return [
        {
            "srNo": str(i + 1),
            "dateOfVisit": "2026-03-0%d" % (i + 1),
            "employeeId": f"EMP{i + 1:03d}",
            "employeeName": f"Visitor {i + 1}",
            "purposeOfVisit": "Monthly review",
        }
        for i in range(n)
    ]


def _compliance_rows(n=3):
    return [
        {"srNo": str(i + 1), "complianceParameters": f"Parameter {i + 1}", "complied": "Yes"}
        for i in range(n)
    ]


@pytest.fixture()
def visit_rows():
    """``agencyVisits`` rows with every required field filled."""
    return _visit_rows


@pytest.fixture()
def compliance_rows():
    """``monthlyCompliance`` rows (CM approval required)."""
    return _compliance_rows
