from typing import Optional, Sequence

from chain_resolver import chain_primaries, merge_primaries, resolve_primary
from contact_store import ContactStore
from db_models import Contact, IdentifyResponse, LinkPrecedence
from logging_setup import get_logger
from response_formatter import format_response

logger = get_logger("identity.reconciliation")


def needs_new_contact(
    matches: Sequence[Contact],
    email: Optional[str],
    phone: Optional[str],
) -> bool:
    """Whether (email, phone) carries information no matching contact holds."""
    # strict equality: a stored None only matches an absent input field
    if any(c.email == email and c.phoneNumber == phone for c in matches):
        return False

    if email is not None and phone is not None:
        return True
    if email is not None:
        return not any(c.email == email for c in matches)
    if phone is not None:
        return not any(c.phoneNumber == phone for c in matches)
    return False


def identify(
    store: ContactStore,
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> IdentifyResponse:
    """Reconcile one normalized (email, phone) pair against the store.

    Must run inside a single transaction; see db_setup.transaction().
    """
    matches = store.find_matching(email, phone)

    if not matches:
        contact = store.create(email, phone, None, LinkPrecedence.PRIMARY)
        logger.info("contact_created", contact_id=contact.id, precedence="primary", linked_id=None)
        return format_response([contact])

    primaries = chain_primaries(store, matches)
    primary = resolve_primary(store, primaries)
    if len(primaries) > 1:
        merge_primaries(store, primaries)

    if needs_new_contact(matches, email, phone):
        contact = store.create(email, phone, primary.id, LinkPrecedence.SECONDARY)
        logger.info(
            "contact_created",
            contact_id=contact.id,
            precedence="secondary",
            linked_id=primary.id,
        )

    return format_response(store.find_chain(primary.id))
