import logging
import sqlite3
from contextlib import contextmanager

from config import get_settings
from exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


def init_db():
    conn = get_db_connection()
    cursor = conn.cursor()

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS Contact (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phoneNumber TEXT,
            email TEXT,
            linkedId INTEGER,
            linkPrecedence TEXT NOT NULL CHECK(linkPrecedence IN ('secondary', 'primary')),
            createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            updatedAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            deletedAt DATETIME,
            FOREIGN KEY (linkedId) REFERENCES Contact (id)
        )
    ''')
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_email ON Contact (email)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_phone ON Contact (phoneNumber)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_linked_id ON Contact (linkedId)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_precedence ON Contact (linkPrecedence)")

    conn.close()
    logger.info("Contact table ready in %s", get_settings().DB_NAME)


def get_db_connection():
    # isolation_level=None leaves transaction control to unit_of_work()
    conn = sqlite3.connect(get_settings().DB_NAME, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def unit_of_work():
    """Run everything done on the yielded connection as one transaction.

    BEGIN IMMEDIATE takes the write lock up front, so two requests cannot both
    read "no match" and then both insert a primary.
    """
    try:
        conn = get_db_connection()
    except sqlite3.Error as exc:
        raise StoreUnavailableError(f"Could not open contact database: {exc}") from exc

    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Could not start transaction: {exc}") from exc
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        try:
            conn.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Could not commit transaction: {exc}") from exc
    finally:
        conn.close()
