"""
Domain errors raised by the reconciliation services.

Expected reconciliation branches (waiting for counts, next round, ...) are
returned as outcomes, not raised. These exceptions cover the conditions the
caller has to handle.
"""


class ReconciliationError(Exception):
    """Base class for reconciliation errors."""
    status_code = 500
    retryable = False


class NotFoundError(ReconciliationError):
    """Reference or location does not exist."""
    status_code = 404


class ValidationError(ReconciliationError):
    """Rejected input on a manual path (negative, non-numeric, wrong round...)."""
    status_code = 422


class ConcurrencyBusyError(ReconciliationError):
    """Another reconciliation holds the lock for this reference."""
    status_code = 409
    retryable = True

    def __init__(self, reference: str):
        super().__init__(f"Reference {reference} is being reconciled by another request")
        self.reference = reference


class PersistenceError(ReconciliationError):
    """The reconciliation transaction could not be written. Safe to retry."""
    status_code = 503
    retryable = True
