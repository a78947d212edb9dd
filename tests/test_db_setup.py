import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

import main
from db_setup import get_db_connection, is_lock_conflict, transaction
from errors import StoreConflictError


@pytest.fixture
def lock_holder(db_path):
    """A second connection that owns the write lock until released."""
    holder = get_db_connection(db_path)
    holder.execute("BEGIN IMMEDIATE")
    yield holder
    if holder.in_transaction:
        holder.rollback()
    holder.close()


def count_rows(conn) -> int:
    return conn.execute("SELECT COUNT(*) FROM Contact").fetchone()[0]


def test_is_lock_conflict_only_matches_lock_errors():
    assert is_lock_conflict(sqlite3.OperationalError("database is locked"))
    assert is_lock_conflict(sqlite3.OperationalError("Database is busy"))
    assert not is_lock_conflict(sqlite3.OperationalError("no such table: Contact"))
    assert not is_lock_conflict(sqlite3.IntegrityError("database is locked"))


def test_transaction_commits_on_success(db_path, conn):
    with transaction(db_path) as tx:
        tx.execute(
            "INSERT INTO Contact (email, linkPrecedence, createdAt, updatedAt) VALUES ('a@example.com', 'primary', 'now', 'now')"
        )

    assert count_rows(conn) == 1


def test_transaction_rolls_back_on_error(db_path, conn):
    with pytest.raises(RuntimeError):
        with transaction(db_path) as tx:
            tx.execute(
                "INSERT INTO Contact (email, linkPrecedence, createdAt, updatedAt) VALUES ('a@example.com', 'primary', 'now', 'now')"
            )
            raise RuntimeError("boom")

    assert count_rows(conn) == 0


def test_other_operational_errors_are_not_conflicts(db_path):
    with pytest.raises(sqlite3.OperationalError):
        with transaction(db_path) as tx:
            tx.execute("SELECT * FROM MissingTable")


def test_held_write_lock_raises_store_conflict(db_path, lock_holder):
    with pytest.raises(StoreConflictError) as excinfo:
        with transaction(db_path, timeout=0.01):
            pass

    assert isinstance(excinfo.value.__cause__, sqlite3.OperationalError)


def test_retry_gives_up_while_lock_is_held(settings, lock_holder):
    locked_settings = settings.model_copy(update={"db_timeout": 0.01, "max_retries": 2})

    with pytest.raises(StoreConflictError):
        main.reconcile_with_retry(locked_settings, "a@example.com", "111")


def test_retry_succeeds_once_lock_is_released(settings, db_path, conn):
    locked = threading.Event()
    release = threading.Event()

    def hold_lock():
        holder = get_db_connection(db_path)
        holder.execute("BEGIN IMMEDIATE")
        locked.set()
        release.wait(timeout=5)
        holder.rollback()
        holder.close()

    thread = threading.Thread(target=hold_lock)
    thread.start()
    assert locked.wait(timeout=5)

    retry_settings = settings.model_copy(update={"db_timeout": 0.01, "max_retries": 50, "retry_backoff": 0.01})
    timer = threading.Timer(0.1, release.set)
    timer.start()
    try:
        response = main.reconcile_with_retry(retry_settings, "a@example.com", "111")
    finally:
        release.set()
        thread.join()
        timer.cancel()

    assert response.contact.primaryContactId == 1
    assert count_rows(conn) == 1


def test_concurrent_bridging_requests_leave_one_primary(settings, store, conn, assert_chain_invariants):
    store.create("a@example.com", "111")
    store.create("b@example.com", "222")
    store.create("c@example.com", "333")
    requests = [("a@example.com", "222"), ("b@example.com", "333"), ("c@example.com", "111")] * 3
    busy_settings = settings.model_copy(update={"max_retries": 20, "retry_backoff": 0.01})

    with ThreadPoolExecutor(max_workers=len(requests)) as pool:
        responses = list(
            pool.map(lambda pair: main.reconcile_with_retry(busy_settings, *pair), requests)
        )

    primaries = conn.execute(
        "SELECT id FROM Contact WHERE linkPrecedence = 'primary' AND deletedAt IS NULL"
    ).fetchall()
    assert [row[0] for row in primaries] == [1]
    assert responses[-1].contact.primaryContactId == 1
    duplicates = conn.execute(
        "SELECT email, phoneNumber FROM Contact GROUP BY email, phoneNumber HAVING COUNT(*) > 1"
    ).fetchall()
    assert duplicates == []
    assert count_rows(conn) == 6
    assert_chain_invariants()
