import sqlite3
from contextlib import contextmanager

from errors import StoreConflictError

DB_NAME = "contacts.db"

_LOCK_MESSAGES = ("database is locked", "database is busy", "database table is locked")


def init_db(db_path: str = DB_NAME):
    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS Contact (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phoneNumber TEXT,
            email TEXT,
            linkedId INTEGER,
            linkPrecedence TEXT NOT NULL CHECK(linkPrecedence IN ('secondary', 'primary')),
            createdAt DATETIME NOT NULL,
            updatedAt DATETIME NOT NULL,
            deletedAt DATETIME,
            FOREIGN KEY (linkedId) REFERENCES Contact (id)
        )
    ''')
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_email ON Contact (email)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_phone ON Contact (phoneNumber)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_linked ON Contact (linkedId)")
    conn.commit()

    conn.close()


def get_db_connection(db_path: str = DB_NAME, timeout: float = 5.0):
    # isolation_level=None: transactions are opened explicitly by transaction()
    conn = sqlite3.connect(db_path, timeout=timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


def is_lock_conflict(exc: Exception) -> bool:
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return any(text in message for text in _LOCK_MESSAGES)


@contextmanager
def transaction(db_path: str = DB_NAME, timeout: float = 5.0):
    """One atomic unit of work per request.

    BEGIN IMMEDIATE takes the write lock before the first read so the
    read-decide-write sequence of concurrent requests is serialized. Lock
    contention is raised as StoreConflictError.
    """
    conn = get_db_connection(db_path, timeout)
    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.OperationalError as exc:
            if conn.in_transaction:
                conn.rollback()
            if is_lock_conflict(exc):
                raise StoreConflictError(str(exc)) from exc
            raise
        except BaseException:
            if conn.in_transaction:
                conn.rollback()
            raise
    finally:
        conn.close()
