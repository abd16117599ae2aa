import pytest

from app import create_app
from collection import TimerCollection
from countdown import ManualScheduler


@pytest.fixture
def app():
    return create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SCHEDULER": "manual",
        "LOG_LEVEL": "DEBUG",
    })


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return app.extensions["first20.store"]


@pytest.fixture
def user(store):
    """A signed-up account without a profile row."""
    return store.sign_up("ada@example.com", "lovelace", {"name": "Ada", "emoji": "🦉"})


@pytest.fixture
def other_user(store):
    return store.sign_up("alan@example.com", "turing", {"name": "Alan", "emoji": "🐢"})


@pytest.fixture
def collection(store, user):
    timers = TimerCollection(store)
    timers.bind(user.user_id)
    return timers


@pytest.fixture
def scheduler():
    return ManualScheduler()
