"""Shared fixtures: a file-backed SQLite store per test plus engine fakes."""

import pytest

from notifier.persistence import NotificationStore, close_database, init_database

from tests.helpers import FakeClock, RecordingEventPublisher, ScriptedGateway, make_engine


@pytest.fixture
def database(tmp_path):
    """Initialize a fresh SQLite database file for one test."""
    init_database(f"sqlite:///{tmp_path / 'notifications.db'}")
    yield
    close_database()


@pytest.fixture
def store(database):
    return NotificationStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def publisher():
    return RecordingEventPublisher()


@pytest.fixture
def engine(store, gateway, clock, publisher):
    engine = make_engine(store, gateway=gateway, clock=clock, publisher=publisher)
    yield engine
    engine.close()
