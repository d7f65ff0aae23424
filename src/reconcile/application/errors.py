"""Errors raised by the consolidation engine and the contact stores."""


class ReconciliationError(Exception):
    """Base class for every error the reconciliation core raises."""


class InvalidObservation(ReconciliationError, ValueError):
    """Neither an email nor a phone number was given."""


class ConsistencyError(ReconciliationError):
    """Stored contacts violate a structural invariant. Never retried."""


class WriteConflict(ReconciliationError):
    """Lock contention or a serialization failure; the invocation may be retried."""


class TransientStoreError(ReconciliationError):
    """The store is unavailable, or conflicts persisted past the retry budget."""
