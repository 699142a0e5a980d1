"""
Shared fixtures for the contact reconciliation tests.

Core tests run against InMemoryContactStore with a deterministic clock; store
and API tests point DB_NAME at a throwaway SQLite file.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from config import get_settings
from contact_store import InMemoryContactStore
from db_models import ContactRecord, LinkPrecedence
from db_setup import init_db


class TickingClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self, start=datetime(2023, 4, 1, 12, 0, tzinfo=timezone.utc), step=timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self):
        now = self.current
        self.current += self.step
        return now


def make_contact(id, email=None, phone=None, linked_id=None, created_minute=None, deleted=False):
    created_at = datetime(2023, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=created_minute or id)
    return ContactRecord(
        id=id,
        email=email,
        phoneNumber=phone,
        linkedId=linked_id,
        linkPrecedence=LinkPrecedence.SECONDARY if linked_id is not None else LinkPrecedence.PRIMARY,
        createdAt=created_at,
        updatedAt=created_at,
        deletedAt=created_at if deleted else None,
    )


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def store(clock):
    return InMemoryContactStore(clock=clock)


@pytest.fixture
def sqlite_db(tmp_path, monkeypatch):
    """Point the service at a fresh SQLite database with the Contact table."""
    monkeypatch.setenv("DB_NAME", str(tmp_path / "contacts.db"))
    get_settings.cache_clear()
    init_db()
    yield get_settings().DB_NAME
    get_settings.cache_clear()


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("DB_NAME", str(tmp_path / "contacts.db"))
    get_settings.cache_clear()

    from main import app

    with TestClient(app) as test_client:
        yield test_client
    get_settings.cache_clear()
