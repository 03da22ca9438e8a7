"""Shared fixtures: an app wired to an in-memory store and a recording dispatcher."""

import pytest

from mealpick.app import create_app
from mealpick.config import Config
from mealpick.notify import LogDispatcher
from mealpick.store import MemoryKV, SubscriberStore

SECRET = "test-secret"


@pytest.fixture
def config():
    return Config(hmac_secret=SECRET)


@pytest.fixture
def kv():
    return MemoryKV()


@pytest.fixture
def store(kv):
    return SubscriberStore(kv, page_size=2)


@pytest.fixture
def dispatcher():
    return LogDispatcher()


@pytest.fixture
def app(config, store, dispatcher):
    app = create_app(config=config, store=store, dispatcher=dispatcher)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {SECRET}"}
