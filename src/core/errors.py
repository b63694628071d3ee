"""
Error Taxonomy for the Reconciliation Pipeline

Every failure raised by the pipeline derives from ReconciliationError so the
dispatcher can map it to an acknowledgment in one place:

- ValidationError / TimestampOrderError: resolved locally, acknowledged
- ConflictError: retried locally, surfaced once the ceiling is exhausted
- everything else: terminates the invocation as a failed run
"""

from typing import Optional


class ReconciliationError(Exception):
    """Base class for all pipeline failures."""

    fatal = True


class ValidationError(ReconciliationError):
    """Irrelevant or malformed notification or resource configuration."""

    fatal = False


class AuthError(ReconciliationError):
    """Vendor login failed."""
    pass


class FetchError(ReconciliationError):
    """Vendor API unreachable or returned a non-success status."""
    pass


class ConflictError(ReconciliationError):
    """Usage store rejected a write because the version token was stale."""

    def __init__(self, event_id: int, lock_version: Optional[int] = None):
        self.event_id = event_id
        self.lock_version = lock_version
        super().__init__(
            f"Version conflict on usage event {event_id} (lockVersion={lock_version})"
        )


class TimestampOrderError(ReconciliationError):
    """Usage window and job window are inconsistent; billing is skipped."""

    fatal = False


class BillingPostError(ReconciliationError):
    """Billing API rejected a charge."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class UsageStoreError(ReconciliationError):
    """Usage store returned an unexpected status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
