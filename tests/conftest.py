import os
import tempfile

os.environ.setdefault("FLASK_ENV", "testing")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="keypanel-logs-"))

from decimal import Decimal

import pytest
from flask import g
from flask.testing import FlaskClient

from app import create_app
from config import TestConfig
from extensions import db
from models import User, Role
from licensing.accounts import AccountBootstrap
from licensing.hierarchy import HierarchyHelper

OWNER = "admin"
OWNER_PASSWORD = "admin123"
SUPER_OWNER = "superowner"
SUPER_OWNER_PASSWORD = "superowner"
PASSWORD = "secret123"


class PanelClient(FlaskClient):
    """
    Test client that starts every request with an empty ``g``.

    The app fixture keeps one app context pushed for the whole test and Flask
    reuses it for requests, so Flask-Login's cached user would otherwise carry
    over from one logged-in client to the next.
    """

    def open(self, *args, **kwargs):
        for name in list(g):
            g.pop(name)
        return super().open(*args, **kwargs)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    app.test_client_class = PanelClient
    with app.app_context():
        db.create_all()
        AccountBootstrap.ensure_defaults()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make(username, role=Role.RESELLER, created_by=OWNER, balance=0, email=None, password=PASSWORD):
        user = User(
            username=username,
            role=role.value if isinstance(role, Role) else role,
            created_by=created_by,
            balance=Decimal(str(balance)),
            email=email,
            is_active=True,
            server_status=True,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.flush()
        HierarchyHelper.attach(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def login(app):
    """Return a test client logged in as `username`."""
    def _login(username, password=PASSWORD):
        c = app.test_client()
        resp = c.post("/api/auth/login", json={"username": username, "password": password})
        assert resp.status_code == 200, resp.get_json()
        return c
    return _login


@pytest.fixture
def owner_client(login):
    return login(OWNER, OWNER_PASSWORD)


@pytest.fixture
def super_client(login):
    return login(SUPER_OWNER, SUPER_OWNER_PASSWORD)


def balance_of(username):
    db.session.expire_all()
    return User.query.filter_by(username=username).first().balance
