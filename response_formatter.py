from typing import Iterable, List, Optional, Sequence

from db_models import Contact, ContactResponse, IdentifyResponse
from errors import DataIntegrityError


def _unique(values: Iterable[Optional[str]]) -> List[str]:
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def format_response(chain: Sequence[Contact]) -> IdentifyResponse:
    """Consolidate one chain: the primary's values first, then secondaries by age."""
    primaries = [c for c in chain if c.is_primary]
    if not primaries:
        raise DataIntegrityError("No primary contact found", contact_ids=[c.id for c in chain])
    primary = min(primaries, key=lambda c: c.age_key)

    secondaries = sorted((c for c in chain if not c.is_primary), key=lambda c: c.age_key)

    return IdentifyResponse(
        contact=ContactResponse(
            primaryContactId=primary.id,
            emails=_unique([primary.email] + [c.email for c in secondaries]),
            phoneNumbers=_unique([primary.phoneNumber] + [c.phoneNumber for c in secondaries]),
            secondaryContactIds=sorted(c.id for c in secondaries),
        )
    )
