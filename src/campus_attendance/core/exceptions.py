class DomainError(Exception):
    """Base exception for business rule violations."""


class ValidationError(DomainError):
    """Raised when input data is invalid or violates domain rules."""


class AuthorizationError(DomainError):
    """Raised when a user lacks permission for an action."""


class NotFoundError(DomainError):
    """Raised when a session or a student record does not exist."""


class InvalidStateError(DomainError):
    """Raised on an illegal transition, e.g. closing a closed session."""


class SessionClosedError(DomainError):
    """Raised when a check-in or rotation hits a closed or expired session."""


class InvalidTokenError(DomainError):
    """Raised when the presented QR code is wrong or stale.

    ``reason`` is ``"mismatch"`` or ``"expired"``; clients see one error kind.
    """

    def __init__(self, message: str, *, reason: str):
        super().__init__(message)
        self.reason = reason


class NotEligibleError(DomainError):
    """Raised when the student is not enrolled in any class of the session."""


class DuplicateCheckInError(DomainError):
    """Raised when the student has already checked in."""


class AlreadyOnLeaveError(DomainError):
    """Raised when a student on approved leave tries to check in."""


class StorageUnavailableError(Exception):
    """Raised when the backing store fails; never retried by the services."""
