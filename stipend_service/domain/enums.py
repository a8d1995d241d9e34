"""Closed value sets used across the domain; string values exist only at the wire and storage boundary"""

from enum import Enum


class StipendClass(str, Enum):
    FULL_SCHOLARSHIP = "full-scholarship"
    SELF_FUNDED = "self-funded"
    PARTIAL = "partial"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PROCESSED = "Processed"
    FAILED = "Failed"


class ProcessingStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    PROCESSED = "Processed"
    REJECTED = "Rejected"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.SUCCESS, TransactionStatus.CANCELLED)


# Statuses that count as "open" for the one-open-transaction-per-stipend rule
OPEN_TRANSACTION_STATUSES = (
    TransactionStatus.PENDING,
    TransactionStatus.PROCESSING,
    TransactionStatus.FAILED,
)


class TransactionType(str, Enum):
    STIPEND = "STIPEND"
    REFUND = "REFUND"


class Cadence(str, Enum):
    MONTHLY = "Monthly"
    ANNUAL = "Annual"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    VIEW = "VIEW"


class AuditOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class EntityKind(str, Enum):
    DEDUCTION_RULE = "DEDUCTION_RULE"
    STIPEND = "STIPEND"
    DEDUCTION = "DEDUCTION"
    TRANSACTION = "TRANSACTION"


class Role(str, Enum):
    ADMIN = "admin"
    FINANCE_OFFICER = "finance_officer"
    STUDENT = "student"

    @property
    def is_staff(self) -> bool:
        return self in (Role.ADMIN, Role.FINANCE_OFFICER)


class ErrorKind(str, Enum):
    INVALID_INPUT = "InvalidInput"
    NOT_FOUND = "NotFound"
    DUPLICATE_NAME = "DuplicateName"
    DUPLICATE_JOURNAL = "DuplicateJournal"
    ILLEGAL_STATE = "IllegalState"
    INVARIANT_VIOLATION = "InvariantViolation"
    UNAUTHORIZED = "Unauthorized"
    FORBIDDEN = "Forbidden"
    UPSTREAM = "Upstream"
    TIMEOUT = "Timeout"
    INTERNAL = "Internal"

