"""Domain-specific exceptions"""

from typing import List, Optional

from stipend_service.domain.enums import ErrorKind


class DomainException(Exception):
    """Base exception for domain layer"""

    kind = ErrorKind.INTERNAL
    status_code = 500

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = list(errors or [])


class InvalidInputError(DomainException):
    """Missing or malformed field, or failed validation"""

    kind = ErrorKind.INVALID_INPUT
    status_code = 400


class UnusableRuleError(InvalidInputError):
    """Caller supplied a rule that is inactive or not applicable to the stipend class"""

    pass


class InvalidStipendAmountError(InvalidInputError):
    """Stipend amount is not positive"""

    pass


class NotFoundError(DomainException):
    """Entity id has no row"""

    kind = ErrorKind.NOT_FOUND
    status_code = 404


class StipendNotFoundError(NotFoundError):
    pass


class BankDetailsMissingError(NotFoundError):
    """Banking collaborator has no account on file for the student"""

    pass


class DuplicateNameError(DomainException):
    """Deduction rule name already taken (active or retired)"""

    kind = ErrorKind.DUPLICATE_NAME
    status_code = 409


class DuplicateJournalError(DomainException):
    """Journal number already used by another stipend"""

    kind = ErrorKind.DUPLICATE_JOURNAL
    status_code = 409


class IllegalStateError(DomainException):
    """State-machine precondition unmet"""

    kind = ErrorKind.ILLEGAL_STATE
    status_code = 409


class InvariantViolationError(DomainException):
    """Business invariant would be broken by the write"""

    kind = ErrorKind.INVARIANT_VIOLATION
    status_code = 409


class UnauthorizedError(DomainException):
    kind = ErrorKind.UNAUTHORIZED
    status_code = 401


class ForbiddenError(DomainException):
    kind = ErrorKind.FORBIDDEN
    status_code = 403


class UpstreamError(DomainException):
    """Banking, Students, Identity or Settlement Oracle unavailable or errored"""

    kind = ErrorKind.UPSTREAM
    status_code = 502


class DeadlineExceededError(DomainException):
    """Request deadline expired while awaiting an external call"""

    kind = ErrorKind.TIMEOUT
    status_code = 504


class InternalError(DomainException):
    kind = ErrorKind.INTERNAL
    status_code = 500
