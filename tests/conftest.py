"""Shared fixtures: mongomock database, Flask app, users."""

import bcrypt
import mongomock
import pytest

import extensions
from app import create_app
from blueprints.auth import new_user_doc
from utils import hooks
from utils.roles import ROLE_ADMIN, ROLE_MEMBER

DEFAULT_PASSWORD = "password1"

_gensalt = bcrypt.gensalt


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Low bcrypt cost so password hashing does not dominate the suite."""
    monkeypatch.setattr(bcrypt, "gensalt", lambda rounds=4, prefix=b"2b": _gensalt(rounds, prefix))


@pytest.fixture(autouse=True)
def registry(monkeypatch):
    """Every test gets an empty hook registry."""
    fresh = hooks.HookRegistry()
    monkeypatch.setattr(hooks, "registry", fresh)
    return fresh


@pytest.fixture
def db():
    database = mongomock.MongoClient()["starter_test"]
    extensions.set_db(database)
    yield database
    extensions.set_db(None)


@pytest.fixture
def app(db, tmp_path, monkeypatch):
    monkeypatch.delenv("MAINTENANCE", raising=False)
    application = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "MONGO_DB": db,
            "WTF_CSRF_ENABLED": False,
            "RATELIMIT_ENABLED": False,
            "ADMIN_LOG_FILE": str(tmp_path / "admin_actions.log"),
            "APP_TIMEZONE": "UTC",
        }
    )
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(db):
    def _make(username, role=ROLE_MEMBER, password=DEFAULT_PASSWORD, **extra):
        doc = new_user_doc(username, username.title(), f"{username}@example.com", password, role=role)
        doc.update(extra)
        doc["_id"] = db.users.insert_one(doc).inserted_id
        return doc

    return _make


@pytest.fixture
def admin_user(make_user):
    return make_user("boss", role=ROLE_ADMIN)


@pytest.fixture
def member_user(make_user):
    return make_user("alice")


def login(client, username, password=DEFAULT_PASSWORD, **kwargs):
    return client.post("/login", data={"user": username, "password": password}, **kwargs)
