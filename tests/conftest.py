"""
Shared pytest fixtures for the Solar Operations test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - store_session / push_session: fake HTTP sessions injected into the
      document-store and push gateways (no network)
    - branch, team, owner, team_lead, other_lead, admin, outsider: directory rows
    - auth: build an Authorization header for a user
"""

import threading

import pytest
import requests

from solarops import create_app
from solarops.integrations.document_store import document_store
from solarops.integrations.push_gateway import push_gateway
from solarops.models import db as _db
from solarops.models.auth import Branch, Team, User
from solarops.services.jwt_service import generate_access_token


# ── Fake HTTP sessions ───────────────────────────────────────────────────


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    """Records POSTs.  Object names listed in ``fail_on`` get a 500,
    names in ``timeout_on`` raise requests.Timeout."""

    def __init__(self):
        self.calls = []
        self.fail_on = set()
        self.timeout_on = set()
        self._lock = threading.Lock()

    def post(self, url, data=None, json=None, headers=None, timeout=None):
        with self._lock:
            self.calls.append({
                "url": url, "data": data, "json": json, "headers": headers, "timeout": timeout,
            })
        if any(url.endswith(name) for name in self.timeout_on):
            raise requests.Timeout("read timed out")
        if any(url.endswith(name) for name in self.fail_on):
            return FakeResponse(500)
        return FakeResponse(200)


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


@pytest.fixture(autouse=True)
def store_session():
    """Route document-store uploads to a fake session for every test."""
    fake = FakeSession()
    document_store.use_session(fake)
    yield fake
    document_store.use_session(None)


@pytest.fixture(autouse=True)
def push_session():
    fake = FakeSession()
    push_gateway.use_session(fake)
    yield fake
    push_gateway.use_session(None)


# ── Directory fixtures ───────────────────────────────────────────────────


def make_user(username, role="employee", **kw):
    user = User(username=username, full_name=kw.pop("full_name", username.title()), role=role, **kw)
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def branch():
    b = Branch(name="Riyadh", location="Riyadh")
    _db.session.add(b)
    _db.session.commit()
    return b


@pytest.fixture()
def team(branch):
    t = Team(name="Install Team A", branch_id=branch.id)
    _db.session.add(t)
    _db.session.commit()
    return t


@pytest.fixture()
def other_team(branch):
    t = Team(name="Install Team B", branch_id=branch.id)
    _db.session.add(t)
    _db.session.commit()
    return t


@pytest.fixture()
def owner(branch):
    return make_user("emp001", branch_id=branch.id, full_name="Sara Owner")


@pytest.fixture()
def team_lead(team, branch):
    return make_user("lead001", role="team_lead", team_id=team.id, branch_id=branch.id)


@pytest.fixture()
def second_lead(team, branch):
    """Another lead on the same team."""
    return make_user("lead002", role="team_lead", team_id=team.id, branch_id=branch.id)


@pytest.fixture()
def other_lead(other_team, branch):
    """A team lead on a team that is not assigned to the report."""
    return make_user("lead900", role="team_lead", team_id=other_team.id, branch_id=branch.id)


@pytest.fixture()
def admin():
    return make_user("admin001", role="admin", full_name="Ops Admin")


@pytest.fixture()
def outsider():
    return make_user("emp999")


@pytest.fixture()
def auth():
    """Return a function building the Authorization header for a user."""

    def _headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user.id, user.role)}"}

    return _headers
