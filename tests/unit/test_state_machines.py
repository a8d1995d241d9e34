"""Unit tests for payment-status and transaction transitions"""

import pytest

from stipend_service.domain.enums import OPEN_TRANSACTION_STATUSES, PaymentStatus, TransactionStatus
from stipend_service.domain.exceptions import IllegalStateError
from stipend_service.domain.state_machines import (
    can_pay,
    can_transition,
    ensure_payment_transition,
    ensure_transaction_transition,
)


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (PaymentStatus.PENDING, PaymentStatus.PROCESSED, True),
        (PaymentStatus.PENDING, PaymentStatus.FAILED, True),
        (PaymentStatus.PROCESSED, PaymentStatus.PENDING, False),
        (PaymentStatus.PROCESSED, PaymentStatus.FAILED, False),
        (PaymentStatus.FAILED, PaymentStatus.PROCESSED, False),
        (PaymentStatus.FAILED, PaymentStatus.PENDING, False),
    ],
)
def test_payment_transitions(current, target, allowed):
    assert can_pay(current, target) is allowed


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (TransactionStatus.PENDING, TransactionStatus.PROCESSING, True),
        (TransactionStatus.PENDING, TransactionStatus.CANCELLED, True),
        (TransactionStatus.PENDING, TransactionStatus.SUCCESS, False),
        (TransactionStatus.PROCESSING, TransactionStatus.SUCCESS, True),
        (TransactionStatus.PROCESSING, TransactionStatus.FAILED, True),
        (TransactionStatus.PROCESSING, TransactionStatus.CANCELLED, True),
        (TransactionStatus.FAILED, TransactionStatus.PENDING, True),
        (TransactionStatus.FAILED, TransactionStatus.CANCELLED, False),
        (TransactionStatus.FAILED, TransactionStatus.PROCESSING, False),
        (TransactionStatus.SUCCESS, TransactionStatus.PROCESSING, False),
        (TransactionStatus.CANCELLED, TransactionStatus.PROCESSING, False),
    ],
)
def test_transaction_transitions(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_terminal_statuses():
    assert TransactionStatus.SUCCESS.is_terminal
    assert TransactionStatus.CANCELLED.is_terminal
    assert not TransactionStatus.FAILED.is_terminal
    assert set(OPEN_TRANSACTION_STATUSES) == {status for status in TransactionStatus if not status.is_terminal}


def test_illegal_payment_transition_raises():
    with pytest.raises(IllegalStateError, match="from Processed to Pending"):
        ensure_payment_transition(PaymentStatus.PROCESSED, PaymentStatus.PENDING)


def test_illegal_transaction_transition_names_operation():
    with pytest.raises(IllegalStateError, match="cannot process a transaction in status CANCELLED"):
        ensure_transaction_transition(TransactionStatus.CANCELLED, TransactionStatus.PROCESSING, "process")
