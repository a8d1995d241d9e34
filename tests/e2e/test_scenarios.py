"""
End-to-end stipend lifecycles through the services, against SQLite and scripted collaborators.

Scenarios:
- single hostel rule on a full-scholarship stipend
- lower-priority rule capped to what remains
- full payout of a stipend its deductions consume entirely, with settlement and audit trail
- payout net of a partial deduction
- settlement failure followed by a successful retry
- cancellation before processing
- duplicate journal number
"""

import asyncio
from decimal import Decimal

import pytest

from stipend_service.domain.enums import AuditAction, EntityKind, PaymentStatus, StipendClass, TransactionStatus
from stipend_service.domain.exceptions import DuplicateJournalError, IllegalStateError
from stipend_service.infrastructure.database.models import AuditEvent
from stipend_service.services.calculation import CalculationService
from tests.fakes import fail, ok

LIFECYCLE_KINDS = (EntityKind.STIPEND, EntityKind.DEDUCTION, EntityKind.TRANSACTION)


def lifecycle_events(db):
    """Stipend, deduction and transaction events oldest first"""
    return (
        db.query(AuditEvent)
        .filter(AuditEvent.entity_kind.in_(LIFECYCLE_KINDS))
        .order_by(AuditEvent.timestamp.asc())
        .all()
    )


@pytest.fixture
def calculation(db, ctx) -> CalculationService:
    return CalculationService(db, ctx)


@pytest.fixture
def rules_a_b(make_rule):
    return make_rule("A", "4000", priority=100), make_rule("B", "3000", priority=1)


def create_jn001(ledger, applied=()):
    return ledger.create_stipend_with_deductions(
        "STU001", StipendClass.SELF_FUNDED, Decimal("5000"), "BANK_TRANSFER", "JN-001", applied=applied
    )


def test_hostel_rule_on_full_scholarship(calculation, make_rule):
    make_rule("Hostel", "3000", "2500", "3500", priority=100, full_scholar=True, self_funded=False)

    result = calculation.calculate("STU002", "full-scholarship", Decimal("50000"))

    assert result.base_amount == Decimal("50000.00")
    assert result.total_deductions == Decimal("3000.00")
    assert result.net_amount == Decimal("47000.00")
    assert [(line.rule_name, line.amount) for line in result.applied] == [("Hostel", Decimal("3000.00"))]


def test_lower_priority_rule_capped(calculation, rules_a_b):
    result = calculation.calculate("STU001", "self-funded", Decimal("5000"))

    assert result.total_deductions == Decimal("5000.00")
    assert result.net_amount == Decimal("0.00")
    assert [(line.rule_name, line.amount) for line in result.applied] == [
        ("A", Decimal("4000.00")),
        ("B", Decimal("1000.00")),
    ]


def test_full_payout(db, ledger, transfer_engine, oracle, calculation, rules_a_b):
    """Deductions take the whole stipend; the zero net transfer still settles and pays it"""
    applied = calculation.calculate("STU001", "self-funded", Decimal("5000")).applied
    stipend, deductions = create_jn001(ledger, applied)
    oracle.will(ok("TXN-ABC"))

    transaction = asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))
    transaction = asyncio.run(transfer_engine.process(transaction.id))

    assert transaction.status is TransactionStatus.SUCCESS
    assert transaction.reference_number == "TXN-ABC"
    assert transaction.amount == Decimal("0.00")
    assert oracle.requests[0].amount == Decimal("0.00")
    paid = ledger.get_stipend(stipend.id)
    assert paid.payment_status is PaymentStatus.PROCESSED
    assert paid.payment_date == transaction.completed_at
    assert paid.linked_transaction_id == transaction.id
    assert [d.amount for d in deductions] == [Decimal("4000.00"), Decimal("1000.00")]

    assert [(event.action, event.entity_kind) for event in lifecycle_events(db)] == [
        (AuditAction.CREATE, EntityKind.STIPEND),
        (AuditAction.CREATE, EntityKind.DEDUCTION),
        (AuditAction.CREATE, EntityKind.TRANSACTION),
        (AuditAction.UPDATE, EntityKind.TRANSACTION),
    ]


def test_payout_with_partial_deduction(ledger, transfer_engine, oracle, calculation, make_rule):
    make_rule("A", "4000", priority=100)
    applied = calculation.calculate("STU001", "self-funded", Decimal("5000")).applied
    stipend, _ = create_jn001(ledger, applied)
    oracle.will(ok("TXN-PART"))

    transaction = asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))
    transaction = asyncio.run(transfer_engine.process(transaction.id))

    assert transaction.status is TransactionStatus.SUCCESS
    assert transaction.amount == Decimal("1000.00")
    assert ledger.get_stipend(stipend.id).payment_status is PaymentStatus.PROCESSED


def test_failure_then_retry(ledger, transfer_engine, oracle, calculation, make_rule):
    make_rule("A", "4000", priority=100)
    applied = calculation.calculate("STU001", "self-funded", Decimal("5000")).applied
    stipend, _ = create_jn001(ledger, applied)
    oracle.will(fail("gateway_timeout"), ok("TXN-RETRY"))

    transaction = asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))
    transaction = asyncio.run(transfer_engine.process(transaction.id))

    assert transaction.status is TransactionStatus.FAILED
    assert transaction.error_message == "gateway_timeout"
    assert ledger.get_stipend(stipend.id).payment_status is PaymentStatus.PENDING

    transaction = asyncio.run(transfer_engine.retry(transaction.id))

    assert transaction.status is TransactionStatus.SUCCESS
    assert ledger.get_stipend(stipend.id).payment_status is PaymentStatus.PROCESSED


def test_cancellation(ledger, transfer_engine, make_stipend):
    stipend = make_stipend("5000")
    transaction = asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))

    transaction = asyncio.run(transfer_engine.cancel(transaction.id, "student withdrew"))

    assert transaction.status is TransactionStatus.CANCELLED
    assert transaction.remarks == "student withdrew"
    assert ledger.get_stipend(stipend.id).payment_status is PaymentStatus.PENDING
    with pytest.raises(IllegalStateError):
        asyncio.run(transfer_engine.process(transaction.id))


def test_duplicate_journal(db, ledger):
    create_jn001(ledger)
    creates = db.query(AuditEvent).filter(AuditEvent.action == AuditAction.CREATE).count()

    with pytest.raises(DuplicateJournalError):
        create_jn001(ledger)

    assert db.query(AuditEvent).filter(AuditEvent.action == AuditAction.CREATE).count() == creates
