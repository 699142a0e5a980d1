"""
Contact stores used by the reconciliation core.

The core only needs exact-match lookups, inserts and relinking, so any store
providing the ContactStore methods can back it. SqliteContactStore is the
production store; InMemoryContactStore is a drop-in substitute for tests and
for reproducing corrupted link structures.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from db_models import ContactRecord, LinkPrecedence
from exceptions import ContactNotFoundError, StoreUnavailableError

logger = logging.getLogger(__name__)

CONTACT_COLUMNS = "id, phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt, deletedAt"


class ContactStore(Protocol):
    def find_by_email_or_phone(self, email: Optional[str], phone: Optional[str]) -> List[ContactRecord]:
        ...

    def find_by_ids_or_linked_ids(self, ids: Iterable[int]) -> List[ContactRecord]:
        ...

    def insert_primary(self, email: Optional[str], phone: Optional[str]) -> ContactRecord:
        ...

    def insert_secondary(self, linked_id: int, email: Optional[str], phone: Optional[str]) -> ContactRecord:
        ...

    def relink(self, contact_id: int, linked_id: int, precedence: LinkPrecedence) -> None:
        ...

    def get_by_id(self, contact_id: int) -> Optional[ContactRecord]:
        ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SqliteContactStore:
    """Contact table access over a connection owned by the caller.

    Nothing here commits; the caller's unit_of_work() decides that.
    """

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], datetime] = _now):
        self.conn = conn
        self.clock = clock

    def _execute(self, query: str, params=()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(query, tuple(params))
        except sqlite3.Error as exc:
            logger.error("Contact store query failed: %s", exc)
            raise StoreUnavailableError(f"Contact store query failed: {exc}") from exc

    def _fetch(self, query: str, params=()) -> List[ContactRecord]:
        rows = self._execute(query, params).fetchall()
        return [ContactRecord.model_validate(dict(row)) for row in rows]

    def find_by_email_or_phone(self, email: Optional[str], phone: Optional[str]) -> List[ContactRecord]:
        conditions = []
        params = []
        if email:
            conditions.append("email = ?")
            params.append(email)
        if phone:
            conditions.append("phoneNumber = ?")
            params.append(phone)

        if not conditions:
            return []

        return self._fetch(f"""
            SELECT {CONTACT_COLUMNS} FROM Contact
            WHERE ({' OR '.join(conditions)}) AND deletedAt IS NULL
            ORDER BY createdAt ASC, id ASC
        """, params)

    def find_by_ids_or_linked_ids(self, ids: Iterable[int]) -> List[ContactRecord]:
        ids = sorted(set(ids))
        if not ids:
            return []

        placeholders = ",".join("?" for _ in ids)
        return self._fetch(f"""
            SELECT {CONTACT_COLUMNS} FROM Contact
            WHERE (id IN ({placeholders}) OR linkedId IN ({placeholders}))
            AND deletedAt IS NULL
            ORDER BY createdAt ASC, id ASC
        """, ids + ids)

    def get_by_id(self, contact_id: int) -> Optional[ContactRecord]:
        records = self._fetch(
            f"SELECT {CONTACT_COLUMNS} FROM Contact WHERE id = ? AND deletedAt IS NULL",
            (contact_id,),
        )
        return records[0] if records else None

    def _insert(self, email, phone, linked_id, precedence: LinkPrecedence) -> ContactRecord:
        now = self.clock().isoformat()
        cursor = self._execute("""
            INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (phone, email, linked_id, precedence.value, now, now))

        contact = self.get_by_id(cursor.lastrowid)
        if contact is None:
            raise ContactNotFoundError(cursor.lastrowid)
        return contact

    def insert_primary(self, email: Optional[str], phone: Optional[str]) -> ContactRecord:
        return self._insert(email, phone, None, LinkPrecedence.PRIMARY)

    def insert_secondary(self, linked_id: int, email: Optional[str], phone: Optional[str]) -> ContactRecord:
        return self._insert(email, phone, linked_id, LinkPrecedence.SECONDARY)

    def relink(self, contact_id: int, linked_id: int, precedence: LinkPrecedence) -> None:
        cursor = self._execute("""
            UPDATE Contact
            SET linkedId = ?, linkPrecedence = ?, updatedAt = ?
            WHERE id = ?
        """, (linked_id, precedence.value, self.clock().isoformat(), contact_id))

        if cursor.rowcount == 0:
            raise ContactNotFoundError(contact_id)


class InMemoryContactStore:
    """Dict-backed store with the same contract as SqliteContactStore.

    Seed records are taken as-is, including ones that break the link
    invariants, so damaged data can be reproduced.
    """

    def __init__(self, records: Optional[Iterable[ContactRecord]] = None,
                 clock: Callable[[], datetime] = _now):
        self.clock = clock
        self.contacts: Dict[int, ContactRecord] = {}
        for record in records or []:
            self.contacts[record.id] = record.model_copy()

    def _live(self) -> List[ContactRecord]:
        live = [c for c in self.contacts.values() if c.deletedAt is None]
        live.sort(key=lambda c: c.sort_key)
        return [c.model_copy() for c in live]

    def find_by_email_or_phone(self, email: Optional[str], phone: Optional[str]) -> List[ContactRecord]:
        return [
            c for c in self._live()
            if (email and c.email == email) or (phone and c.phoneNumber == phone)
        ]

    def find_by_ids_or_linked_ids(self, ids: Iterable[int]) -> List[ContactRecord]:
        ids = set(ids)
        return [c for c in self._live() if c.id in ids or c.linkedId in ids]

    def get_by_id(self, contact_id: int) -> Optional[ContactRecord]:
        contact = self.contacts.get(contact_id)
        if contact is None or contact.deletedAt is not None:
            return None
        return contact.model_copy()

    def _insert(self, email, phone, linked_id, precedence: LinkPrecedence) -> ContactRecord:
        now = self.clock()
        contact = ContactRecord(
            id=max(self.contacts, default=0) + 1,
            email=email,
            phoneNumber=phone,
            linkedId=linked_id,
            linkPrecedence=precedence,
            createdAt=now,
            updatedAt=now,
        )
        self.contacts[contact.id] = contact
        return contact.model_copy()

    def insert_primary(self, email: Optional[str], phone: Optional[str]) -> ContactRecord:
        return self._insert(email, phone, None, LinkPrecedence.PRIMARY)

    def insert_secondary(self, linked_id: int, email: Optional[str], phone: Optional[str]) -> ContactRecord:
        return self._insert(email, phone, linked_id, LinkPrecedence.SECONDARY)

    def relink(self, contact_id: int, linked_id: int, precedence: LinkPrecedence) -> None:
        if contact_id not in self.contacts:
            raise ContactNotFoundError(contact_id)
        self.contacts[contact_id] = self.contacts[contact_id].model_copy(update={
            "linkedId": linked_id,
            "linkPrecedence": precedence,
            "updatedAt": self.clock(),
        })
