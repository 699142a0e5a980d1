"""
Tests for the SQLite contact store and the unit of work around it.
"""

import sqlite3
from datetime import timedelta

import pytest

from contact_store import SqliteContactStore
from db_models import LinkPrecedence
from db_setup import get_db_connection, unit_of_work
from exceptions import ContactNotFoundError, StoreUnavailableError
from reconciliation import identify_contact
from tests.conftest import TickingClock


@pytest.fixture
def sqlite_store(sqlite_db):
    with unit_of_work() as conn:
        yield SqliteContactStore(conn, clock=TickingClock())


def count_contacts():
    conn = get_db_connection()
    try:
        return conn.execute("SELECT COUNT(*) FROM Contact").fetchone()[0]
    finally:
        conn.close()


class TestSqliteContactStore:
    def test_insert_primary(self, sqlite_store):
        contact = sqlite_store.insert_primary("a@x.com", "111")

        assert contact.id == 1
        assert contact.email == "a@x.com"
        assert contact.phoneNumber == "111"
        assert contact.linkedId is None
        assert contact.linkPrecedence == LinkPrecedence.PRIMARY
        assert contact.createdAt.utcoffset() == timedelta(0)
        assert contact.deletedAt is None

    def test_insert_secondary(self, sqlite_store):
        primary = sqlite_store.insert_primary("a@x.com", "111")
        secondary = sqlite_store.insert_secondary(primary.id, "b@x.com", None)

        assert secondary.linkedId == primary.id
        assert secondary.linkPrecedence == LinkPrecedence.SECONDARY
        assert secondary.phoneNumber is None

    def test_find_by_email_or_phone(self, sqlite_store):
        sqlite_store.insert_primary("a@x.com", "111")
        sqlite_store.insert_primary("b@x.com", None)
        sqlite_store.insert_primary(None, "111")

        assert [c.id for c in sqlite_store.find_by_email_or_phone("a@x.com", None)] == [1]
        assert [c.id for c in sqlite_store.find_by_email_or_phone(None, "111")] == [1, 3]
        assert [c.id for c in sqlite_store.find_by_email_or_phone("b@x.com", "111")] == [1, 2, 3]
        assert sqlite_store.find_by_email_or_phone(None, None) == []

    def test_soft_deleted_rows_are_invisible(self, sqlite_store):
        sqlite_store.insert_primary("a@x.com", "111")
        sqlite_store.conn.execute("UPDATE Contact SET deletedAt = ? WHERE id = 1", ("2023-05-01T00:00:00+00:00",))

        assert sqlite_store.find_by_email_or_phone("a@x.com", "111") == []
        assert sqlite_store.find_by_ids_or_linked_ids([1]) == []
        assert sqlite_store.get_by_id(1) is None

    def test_find_by_ids_or_linked_ids(self, sqlite_store):
        primary = sqlite_store.insert_primary("a@x.com", "111")
        sqlite_store.insert_secondary(primary.id, "b@x.com", "111")
        sqlite_store.insert_primary("c@x.com", "333")

        found = sqlite_store.find_by_ids_or_linked_ids([primary.id])

        assert [c.id for c in found] == [1, 2]
        assert sqlite_store.find_by_ids_or_linked_ids([]) == []

    def test_relink(self, sqlite_store):
        older = sqlite_store.insert_primary("a@x.com", "111")
        newer = sqlite_store.insert_primary("b@x.com", "222")

        sqlite_store.relink(newer.id, older.id, LinkPrecedence.SECONDARY)

        relinked = sqlite_store.get_by_id(newer.id)
        assert relinked.linkedId == older.id
        assert relinked.linkPrecedence == LinkPrecedence.SECONDARY
        assert relinked.updatedAt > newer.updatedAt
        assert relinked.createdAt == newer.createdAt

    def test_relink_missing_contact(self, sqlite_store):
        with pytest.raises(ContactNotFoundError):
            sqlite_store.relink(42, 1, LinkPrecedence.SECONDARY)

    def test_driver_errors_become_store_unavailable(self, tmp_path):
        conn = sqlite3.connect(str(tmp_path / "empty.db"))
        store = SqliteContactStore(conn)

        with pytest.raises(StoreUnavailableError) as exc_info:
            store.find_by_email_or_phone("a@x.com", None)

        assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)
        conn.close()


class TestUnitOfWork:
    def test_commits_on_success(self, sqlite_db):
        with unit_of_work() as conn:
            SqliteContactStore(conn).insert_primary("a@x.com", "111")

        assert count_contacts() == 1

    def test_rolls_back_on_error(self, sqlite_db):
        with pytest.raises(RuntimeError):
            with unit_of_work() as conn:
                SqliteContactStore(conn).insert_primary("a@x.com", "111")
                raise RuntimeError("boom")

        assert count_contacts() == 0

    def test_partial_merge_is_not_visible_after_failure(self, sqlite_db):
        with unit_of_work() as conn:
            store = SqliteContactStore(conn, clock=TickingClock())
            identify_contact(store, "a@x.com", "111")
            identify_contact(store, "b@x.com", "222")

        with pytest.raises(StoreUnavailableError):
            with unit_of_work() as conn:
                store = SqliteContactStore(conn)
                store.relink(2, 1, LinkPrecedence.SECONDARY)
                raise StoreUnavailableError("connection lost")

        with unit_of_work() as conn:
            contact = SqliteContactStore(conn).get_by_id(2)
        assert contact.linkPrecedence == LinkPrecedence.PRIMARY
        assert contact.linkedId is None


class TestIdentifyOnSqlite:
    def test_merge_end_to_end(self, sqlite_store):
        identify_contact(sqlite_store, "george@hillvalley.edu", "919191")
        identify_contact(sqlite_store, "biffsucks@hillvalley.edu", "717171")
        identify_contact(sqlite_store, "doc@hillvalley.edu", "717171")

        response = identify_contact(sqlite_store, "george@hillvalley.edu", "717171")

        assert response.primaryContactId == 1
        assert response.emails == [
            "george@hillvalley.edu",
            "biffsucks@hillvalley.edu",
            "doc@hillvalley.edu",
        ]
        assert response.phoneNumbers == ["919191", "717171"]
        assert response.secondaryContactIds == [2, 3]

        rows = sqlite_store.conn.execute("SELECT id, linkedId FROM Contact ORDER BY id").fetchall()
        assert [tuple(row) for row in rows] == [(1, None), (2, 1), (3, 1)]
