import itertools
import re
from datetime import datetime

import pytest
import sqlalchemy as sa

from onboarding import create_app
from onboarding.constants import Label, Region, Role
from onboarding.extensions import db
from onboarding.models import User
from onboarding.services.clock import FixedClock
from onboarding.services.commands import Actor, CreateRequest
from onboarding.services.mailer import MemoryEmailSender
from onboarding.services.registry import get_lifecycle
from onboarding.settings import TestConfig
from onboarding.utils.passwords import hash_password

START = datetime(2026, 1, 1, 9, 0)
PASSWORD = "correct-horse-42"

# key -> (email, roles, labels, receive_emails)
STAFF = {
    "inkoper": ("inkoper@example.com", {Role.INKOPER}, {Label.COLORIGINZ}, True),
    "finance": ("finance@example.com", {Role.FINANCE}, {Label.COLORIGINZ}, True),
    "finance_quiet": ("finance.quiet@example.com", {Role.FINANCE}, {Label.COLORIGINZ}, False),
    "erp": ("erp@example.com", {Role.ERP}, {Label.COLORIGINZ}, True),
    "admin": ("admin@example.com", {Role.ADMIN}, {Label.COLORIGINZ, Label.PFC}, True),
}


@pytest.fixture(scope="session")
def password_hash():
    """scrypt is slow on purpose; hash the shared test password once."""
    return hash_password(PASSWORD)


@pytest.fixture()
def clock():
    return FixedClock(START)


@pytest.fixture()
def mailer():
    return MemoryEmailSender(mail_from="noreply@test.local", app_url="http://testserver")


def _seed_staff(password_hash):
    for key, (email, roles, labels, receive_emails) in STAFF.items():
        user = User(
            email=email,
            first_name=key.replace("_", " ").title(),
            last_name="Tester",
            password_hash=password_hash,
            is_active=True,
            receive_emails=receive_emails,
            preferred_language="en",
        )
        user.set_roles(roles)
        user.set_labels(labels)
        db.session.add(user)
    db.session.commit()


@pytest.fixture()
def app(tmp_path, clock, mailer, password_hash):
    class _Config(TestConfig):
        UPLOAD_DIR = str(tmp_path / "uploads")

    app = create_app(_Config, clock=clock, mailer=mailer)
    with app.app_context():
        db.create_all()
        _seed_staff(password_hash)

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def login(client):
    def _login(key_or_email, password=PASSWORD):
        email = STAFF[key_or_email][0] if key_or_email in STAFF else key_or_email
        response = client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.get_json()
        return response

    return _login


# =========================================================
# Service-level fixtures (inside one app context)
# =========================================================
@pytest.fixture()
def ctx(app):
    with app.app_context():
        yield app
        db.session.rollback()


def get_user(email: str) -> User:
    return db.session.scalars(sa.select(User).where(User.email == email)).one()


@pytest.fixture()
def actors(ctx):
    return {key: Actor.from_user(get_user(email)) for key, (email, *_rest) in STAFF.items()}


@pytest.fixture()
def lifecycle(ctx):
    return get_lifecycle()


@pytest.fixture()
def create_request(lifecycle, actors):
    numbers = itertools.count(1)

    def _create(**overrides):
        n = next(numbers)
        values = {
            "supplier_name": f"Supplier {n}",
            "supplier_email": f"supplier{n}@example.com",
            "region": Region.EU,
        }
        values.update(overrides)
        return lifecycle.handle(CreateRequest(**values), actors["inkoper"])

    return _create


def invitation_token_from(message) -> str:
    match = re.search(r"/supplier/(\S+)", message.body)
    assert match, message.body
    return match.group(1)


# =========================================================
# Stand-ins for requests.Session
# =========================================================
class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self._payload = payload
        self.status_code = status_code

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def _call(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error:
            raise self.error
        return self.response

    def get(self, url, **kwargs):
        return self._call("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._call("POST", url, **kwargs)
