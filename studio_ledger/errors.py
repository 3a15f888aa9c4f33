from __future__ import annotations

"""Domain error taxonomy for the purchase and booking ledger.

Every error raised by the core carries an ``ErrorKind``. The kind decides the
externally visible status classification, so handlers and callers branch on
``error.kind`` instead of inspecting ad-hoc attributes.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    EXPIRED = "expired"
    INSUFFICIENT_SESSIONS = "insufficient_sessions"
    PAYMENT_MISMATCH = "payment_mismatch"
    PARTIAL_FAILURE = "partial_failure"
    INTEGRITY = "integrity"

    @property
    def status(self) -> int:
        return _STATUS_BY_KIND[self]

    @property
    def is_client_error(self) -> bool:
        return self.status < 500


_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.EXPIRED: 410,
    ErrorKind.INSUFFICIENT_SESSIONS: 422,
    ErrorKind.PAYMENT_MISMATCH: 500,
    ErrorKind.PARTIAL_FAILURE: 500,
    ErrorKind.INTEGRITY: 500,
}


class LedgerError(Exception):
    kind: ErrorKind = ErrorKind.INTEGRITY

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def status(self) -> int:
        return self.kind.status

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class ValidationError(LedgerError):
    kind = ErrorKind.VALIDATION


class ForbiddenError(LedgerError):
    kind = ErrorKind.FORBIDDEN


class NotFoundError(LedgerError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(LedgerError):
    kind = ErrorKind.CONFLICT


class DuplicateBooking(ConflictError):
    def __init__(self, message: str, booking_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.booking_id = booking_id


class SessionFull(ConflictError):
    def __init__(self, message: str, session_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class ExpiredError(LedgerError):
    kind = ErrorKind.EXPIRED


class InsufficientSessions(LedgerError):
    kind = ErrorKind.INSUFFICIENT_SESSIONS


class PaymentMismatch(LedgerError):
    kind = ErrorKind.PAYMENT_MISMATCH


class PartialFailure(LedgerError):
    """The entitlement is durable but a secondary write did not land."""

    kind = ErrorKind.PARTIAL_FAILURE

    def __init__(self, message: str, entity_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.entity_id = entity_id
