"""Allowed status transitions for stipends and transactions"""

from typing import Dict, FrozenSet

from stipend_service.domain.enums import PaymentStatus, TransactionStatus
from stipend_service.domain.exceptions import IllegalStateError

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PROCESSED, PaymentStatus.FAILED}),
    PaymentStatus.PROCESSED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}

TRANSACTION_TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.PROCESSING, TransactionStatus.CANCELLED}),
    TransactionStatus.PROCESSING: frozenset(
        {TransactionStatus.SUCCESS, TransactionStatus.FAILED, TransactionStatus.CANCELLED}
    ),
    TransactionStatus.FAILED: frozenset({TransactionStatus.PENDING}),  # Retry
    TransactionStatus.SUCCESS: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
}


def can_pay(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_TRANSITIONS[current]


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in TRANSACTION_TRANSITIONS[current]


def ensure_payment_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    if not can_pay(current, target):
        raise IllegalStateError(f"stipend payment status cannot change from {current.value} to {target.value}")


def ensure_transaction_transition(current: TransactionStatus, target: TransactionStatus, operation: str) -> None:
    if not can_transition(current, target):
        raise IllegalStateError(f"cannot {operation} a transaction in status {current.value}")
