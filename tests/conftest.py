from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from config import Settings
from contact_store import ContactStore
from db_setup import get_db_connection, init_db
from main import create_app

BASE_TIME = datetime(2023, 4, 1, 10, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "contacts.db")
    init_db(path)
    return path


@pytest.fixture
def conn(db_path):
    connection = get_db_connection(db_path)
    yield connection
    connection.close()


@pytest.fixture
def store(conn):
    return ContactStore(conn)


@pytest.fixture
def soft_delete(conn):
    def _delete(contact_id: int) -> None:
        conn.execute(
            "UPDATE Contact SET deletedAt = ? WHERE id = ?",
            (datetime.now(timezone.utc).isoformat(), contact_id),
        )

    return _delete


@pytest.fixture
def assert_chain_invariants(conn):
    """Every live secondary points straight at a live primary."""

    def _check() -> None:
        rows = [dict(r) for r in conn.execute("SELECT * FROM Contact WHERE deletedAt IS NULL")]
        by_id = {row["id"]: row for row in rows}
        for row in rows:
            if row["linkPrecedence"] == "primary":
                assert row["linkedId"] is None
            else:
                target = by_id.get(row["linkedId"])
                assert target is not None, f"contact {row['id']} links to a missing contact"
                assert target["linkPrecedence"] == "primary", f"contact {row['id']} links to a secondary"

    return _check


@pytest.fixture
def settings(db_path):
    return Settings(database_path=db_path, max_retries=2, retry_backoff=0.0, log_level="WARNING")


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client
