"""
Shared pytest fixtures for the CrewFlow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - contract / catalog: pre-created Contract and Function/Training rows
"""

import pytest

from crewflow import create_app
from crewflow.models import db as _db
from crewflow.models.matrix import Contract, Function, Training


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


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── ORM helpers ──────────────────────────────────────────────────────────


def _make_contract(number="CT-001", name="Offshore Maintenance", client="Petro Corp"):
    c = Contract(number=number, name=name, client=client, status="active")
    _db.session.add(c)
    _db.session.flush()
    return c


def _make_function(name, regime="ONSHORE", active=True):
    f = Function(name=name, regime=regime, active=active)
    _db.session.add(f)
    _db.session.flush()
    return f


def _make_training(name, hours=8, validity_value=24, validity_unit="months", active=True):
    t = Training(name=name, hours=hours, validity_value=validity_value, validity_unit=validity_unit, active=active)
    _db.session.add(t)
    _db.session.flush()
    return t


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def contract():
    c = _make_contract()
    _db.session.commit()
    return c


@pytest.fixture()
def catalog():
    """Two functions and three trainings, committed."""
    data = {
        "welder": _make_function("Welder", "OFFSHORE"),
        "rigger": _make_function("Rigger", "ONSHORE"),
        "nr10": _make_training("NR-10 Electrical Safety", hours=40),
        "nr35": _make_training("NR-35 Work at Height", hours=8, validity_value=2, validity_unit="years"),
        "huet": _make_training("HUET Helicopter Escape", hours=16),
    }
    _db.session.commit()
    return data
