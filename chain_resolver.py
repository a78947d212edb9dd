"""Finding and merging the primaries of contact chains.

Every function here takes the contacts it reasons about plus a ContactStore;
nothing is cached between calls, so resolution can be repeated after writes.
"""
from typing import List, Sequence

from contact_store import ContactStore
from db_models import Contact, LinkPrecedence
from errors import DataIntegrityError
from logging_setup import get_logger

logger = get_logger("identity.chain_resolver")


def oldest(contacts: Sequence[Contact]) -> Contact:
    return min(contacts, key=lambda c: c.age_key)


def resolve_primary(store: ContactStore, contacts: Sequence[Contact]) -> Contact:
    """Return the authoritative primary for a non-empty set of contacts.

    Primaries in the set win directly (oldest first). A set made only of
    secondaries is resolved through their linkedIds; if none of those is a
    live primary the chain is orphaned.
    """
    if not contacts:
        raise ValueError("cannot resolve the primary of an empty contact set")

    primaries = [c for c in contacts if c.is_primary]
    if primaries:
        return oldest(primaries)

    linked_ids = {c.linkedId for c in contacts if c.linkedId is not None}
    primary = store.find_primary_among(linked_ids)
    if primary is None:
        raise DataIntegrityError(
            "No primary contact found for secondaries",
            contact_ids=[c.id for c in contacts],
        )
    return primary


def chain_primaries(store: ContactStore, contacts: Sequence[Contact]) -> List[Contact]:
    """Distinct primaries of every chain the contacts belong to, oldest first."""
    root_ids = {c.id if c.is_primary else c.linkedId for c in contacts}
    primaries = store.find_primaries_among(root_ids)

    missing = root_ids - {p.id for p in primaries}
    if missing:
        orphans = [c.id for c in contacts if not c.is_primary and c.linkedId in missing]
        raise DataIntegrityError(
            "Secondary contacts point at no live primary",
            contact_ids=orphans or missing,
        )
    return sorted(primaries, key=lambda c: c.age_key)


def merge_primaries(store: ContactStore, primaries: Sequence[Contact]) -> Contact:
    """Fold every chain onto the oldest primary and return the survivor.

    Absorbed primaries are demoted and their secondaries re-pointed straight
    at the survivor, so no secondary ever links to another secondary.
    """
    ordered = sorted({p.id: p for p in primaries}.values(), key=lambda c: c.age_key)
    survivor, absorbed = ordered[0], ordered[1:]

    repointed = 0
    for contact in absorbed:
        store.update(contact.id, precedence=LinkPrecedence.SECONDARY, linked_id=survivor.id)
        repointed += store.update_all_linked_to(contact.id, survivor.id)

    if absorbed:
        logger.info(
            "chains_merged",
            survivor=survivor.id,
            absorbed=[c.id for c in absorbed],
            repointed=repointed,
        )
    return survivor
