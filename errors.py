class ReconciliationError(Exception):
    """Base class for failures raised while reconciling a contact."""


class DataIntegrityError(ReconciliationError):
    """The stored chains violate the primary/secondary invariants.

    Raised when a secondary points at no live primary, or when a chain has no
    primary at response time. Never retried.
    """

    def __init__(self, message: str, contact_ids=None):
        super().__init__(message)
        self.contact_ids = sorted(contact_ids or [])


class StoreConflictError(ReconciliationError):
    """The store could not take the write lock for this request; safe to retry."""
