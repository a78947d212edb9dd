from datetime import datetime, timezone
from typing import Iterable, List, Optional

from pydantic import ValidationError

from db_models import Contact, LinkPrecedence
from errors import DataIntegrityError

# Soft-deleted rows are invisible to every query below.
LIVE = "deletedAt IS NULL"
OLDEST_FIRST = "ORDER BY createdAt ASC, id ASC"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return _now()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _placeholders(values: List[int]) -> str:
    return ", ".join("?" for _ in values)


class ContactStore:
    """Contact table access over one sqlite3 connection.

    The store never commits; callers wrap a request in db_setup.transaction().
    """

    def __init__(self, conn):
        self.conn = conn

    def _select(self, where: str, params=()) -> List[Contact]:
        cursor = self.conn.execute(
            f"SELECT * FROM Contact WHERE {LIVE} AND ({where}) {OLDEST_FIRST}",
            tuple(params),
        )
        contacts = []
        for row in cursor.fetchall():
            try:
                contacts.append(Contact(**dict(row)))
            except ValidationError as exc:
                raise DataIntegrityError(
                    f"Stored contact {row['id']} breaks the chain invariants",
                    contact_ids=[row["id"]],
                ) from exc
        return contacts

    def find_matching(self, email: Optional[str] = None, phone: Optional[str] = None) -> List[Contact]:
        conditions = []
        params = []
        if email is not None:
            conditions.append("email = ?")
            params.append(email)
        if phone is not None:
            conditions.append("phoneNumber = ?")
            params.append(phone)
        if not conditions:
            return []
        return self._select(" OR ".join(conditions), params)

    def find_primaries_among(self, ids: Iterable[int]) -> List[Contact]:
        ids = sorted({i for i in ids if i is not None})
        if not ids:
            return []
        return self._select(
            f"id IN ({_placeholders(ids)}) AND linkPrecedence = ?",
            [*ids, LinkPrecedence.PRIMARY.value],
        )

    def find_primary_among(self, ids: Iterable[int]) -> Optional[Contact]:
        primaries = self.find_primaries_among(ids)
        return primaries[0] if primaries else None

    def find_chain(self, primary_id: int) -> List[Contact]:
        """The primary and every secondary linked to it, oldest first."""
        return self._select("id = ? OR linkedId = ?", (primary_id, primary_id))

    def get(self, contact_id: int) -> Optional[Contact]:
        found = self._select("id = ?", (contact_id,))
        return found[0] if found else None

    def create(
        self,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        linked_id: Optional[int] = None,
        precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
        created_at: Optional[datetime] = None,
    ) -> Contact:
        created = _timestamp(created_at)
        cursor = self.conn.execute(
            """
            INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (phone, email, linked_id, LinkPrecedence(precedence).value, created, created),
        )
        return self.get(cursor.lastrowid)

    def update(
        self,
        contact_id: int,
        precedence: Optional[LinkPrecedence] = None,
        linked_id: Optional[int] = None,
    ) -> None:
        assignments = ["updatedAt = ?"]
        params = [_now()]
        if precedence is not None:
            assignments.append("linkPrecedence = ?")
            params.append(LinkPrecedence(precedence).value)
        if linked_id is not None:
            assignments.append("linkedId = ?")
            params.append(linked_id)
        self.conn.execute(
            f"UPDATE Contact SET {', '.join(assignments)} WHERE id = ?",
            (*params, contact_id),
        )

    def update_all_linked_to(self, old_primary_id: int, new_primary_id: int) -> int:
        cursor = self.conn.execute(
            f"UPDATE Contact SET linkedId = ?, updatedAt = ? WHERE linkedId = ? AND {LIVE}",
            (new_primary_id, _now(), old_primary_id),
        )
        return cursor.rowcount
