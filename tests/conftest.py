"""Shared fixtures: an app on in-memory SQLite and a controllable clock."""

from datetime import datetime, timedelta

import pytest

from app import create_app
from config import TestConfig
from models import db
from security.identity import (
    Identity,
    IdentityProvider,
    InvalidCredentials,
    InvalidToken,
    TokenPair,
    UserAlreadyExists,
)


@pytest.fixture
def app():
    a = create_app(TestConfig)
    with a.app_context():
        db.create_all()
        yield a
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock(monkeypatch):
    c = FakeClock(datetime(2026, 3, 1, 12, 0, 0))
    monkeypatch.setattr("routes.verify_pin._now", c)
    return c


class FakeIdentityProvider(IdentityProvider):
    """In-memory provider recording every call."""

    def __init__(self):
        self.users = {}
        self.tokens = {}
        self.calls = []
        self.sign_in_error = None
        self.create_error = None

    def sign_in_with_password(self, email, password):
        self.calls.append(("sign_in", email))
        if self.sign_in_error:
            raise self.sign_in_error
        if self.users.get(email) != password:
            raise InvalidCredentials("Invalid login credentials")
        n = len(self.tokens) + 1
        pair = TokenPair(access_token=f"access-{n}", refresh_token=f"refresh-{n}")
        self.tokens[pair.access_token] = email
        return pair

    def create_user(self, email, password):
        self.calls.append(("create", email))
        if self.create_error:
            raise self.create_error
        if email in self.users:
            raise UserAlreadyExists("already been registered")
        self.users[email] = password
        return Identity(id=str(len(self.users)), email=email)

    def get_user(self, access_token):
        self.calls.append(("get_user", access_token))
        if access_token not in self.tokens:
            raise InvalidToken("bad token")
        return Identity(id="1", email=self.tokens[access_token])


@pytest.fixture
def fake_provider(app):
    provider = FakeIdentityProvider()
    app.extensions["identity_provider"] = provider
    return provider
