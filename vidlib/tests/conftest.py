"""Shared fixtures: in-memory stores, wired services and a Flask test client."""

import logging

import pytest

from vidlib.config import config
from vidlib.services import build_services
from vidlib.tests.fakes import FakeClock, InMemoryResourceStore, InMemorySessionStore

ADMIN_TOKEN = "test-admin-token"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sessions(clock):
    return InMemorySessionStore(clock)


@pytest.fixture
def resources(clock):
    return InMemoryResourceStore(clock)


@pytest.fixture
def services(sessions, resources, clock):
    return build_services(
        sessions,
        resources,
        logger=logging.getLogger("vidlib.test"),
        clock=clock,
        limit=3,
        inactive_days=30,
        batch_size=2,
    )


@pytest.fixture
def app(services, monkeypatch):
    from vidlib.app import create_app

    monkeypatch.setattr(config, "ADMIN_TOKEN", ADMIN_TOKEN)
    app = create_app(services=services, start_scheduler=False)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
