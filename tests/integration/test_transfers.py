"""Integration tests for the transfer engine"""

import asyncio
import uuid
from decimal import Decimal

import pytest

from stipend_service.domain.enums import (
    AuditAction,
    AuditOutcome,
    EntityKind,
    ErrorKind,
    PaymentStatus,
    ProcessingStatus,
    StipendClass,
    TransactionStatus,
)
from stipend_service.domain.exceptions import (
    BankDetailsMissingError,
    IllegalStateError,
    InvalidInputError,
    InvalidStipendAmountError,
    NotFoundError,
    UpstreamError,
)
from stipend_service.infrastructure.database.models import AuditEvent, Stipend, Transaction
from stipend_service.services.transfers import TransferEngine
from tests.fakes import fail, line, ok


def transaction_events(db, transaction_id):
    return (
        db.query(AuditEvent)
        .filter(AuditEvent.entity_kind == EntityKind.TRANSACTION, AuditEvent.entity_id == str(transaction_id))
        .order_by(AuditEvent.timestamp.asc())
        .all()
    )


@pytest.fixture
def initiated(transfer_engine, make_stipend):
    """A PENDING transaction for a 5000 stipend of STU001"""
    stipend = make_stipend("5000")
    transaction = asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))
    return stipend, transaction


@pytest.fixture
def failed(transfer_engine, initiated, oracle):
    stipend, transaction = initiated
    oracle.will(fail("insufficient institution funds"))
    return stipend, asyncio.run(transfer_engine.process(transaction.id))


def test_initiate_opens_pending_transaction(db, initiated, banking, settings):
    stipend, transaction = initiated

    assert transaction.status is TransactionStatus.PENDING
    assert transaction.amount == Decimal("5000.00")
    assert transaction.student_id == "STU001"
    assert transaction.destination_account == "0012345678"
    assert transaction.destination_bank == "BANK-A"
    assert transaction.source_account == settings.source_account
    assert transaction.attempt_count == 0
    assert banking.calls == ["STU001"]
    events = transaction_events(db, transaction.id)
    assert [event.action for event in events] == [AuditAction.CREATE]


def test_initiate_uses_net_amount(transfer_engine, ledger, make_rule, make_stipend):
    hostel = make_rule("Hostel", "3000", "2500", "3500")
    stipend = make_stipend("5000")
    ledger.apply_deductions(stipend.id, [line(hostel, "3000")])

    transaction = asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))

    assert transaction.amount == Decimal("2000.00")


def test_initiate_fully_deducted_stipend_opens_zero_transfer(transfer_engine, ledger, make_rule, make_stipend):
    hostel = make_rule("Hostel", "3000", "2500", "3500")
    mess = make_rule("Mess", "2000", "1500", "2500")
    stipend = make_stipend("5000")
    ledger.apply_deductions(stipend.id, [line(hostel, "3000"), line(mess, "2000")])

    transaction = asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))

    assert transaction.status is TransactionStatus.PENDING
    assert transaction.amount == Decimal("0.00")


def test_initiate_rejects_zero_stipend_amount(db, transfer_engine):
    stipend = Stipend(
        student_id="STU001",
        amount=Decimal("0.00"),
        stipend_class=StipendClass.SELF_FUNDED,
        payment_method="BANK_TRANSFER",
        journal_number="JN-ZERO",
    )
    db.add(stipend)
    db.commit()

    with pytest.raises(InvalidStipendAmountError, match="invalid stipend amount"):
        asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))

    assert db.query(Transaction).count() == 0


def test_initiate_without_bank_details(db, transfer_engine, make_stipend):
    stipend = make_stipend("5000", student_id="STU404")

    with pytest.raises(BankDetailsMissingError):
        asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))

    assert db.query(Transaction).count() == 0


def test_initiate_requires_payment_method(transfer_engine, make_stipend):
    stipend = make_stipend("5000")

    with pytest.raises(InvalidInputError):
        asyncio.run(transfer_engine.initiate(stipend.id, ""))


def test_initiate_missing_stipend(transfer_engine):
    with pytest.raises(NotFoundError):
        asyncio.run(transfer_engine.initiate(uuid.uuid4(), "BANK_TRANSFER"))


def test_second_initiate_while_open_rejected(db, transfer_engine, initiated):
    stipend, _ = initiated

    with pytest.raises(IllegalStateError, match="open transaction"):
        asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))

    assert db.query(Transaction).count() == 1


def test_initiate_on_closed_stipend_rejected(transfer_engine, ledger, make_stipend):
    stipend = make_stipend("5000")
    ledger.set_payment_status(stipend.id, PaymentStatus.FAILED)

    with pytest.raises(IllegalStateError):
        asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))


def test_process_success_pays_stipend(db, transfer_engine, ledger, oracle, make_rule, make_stipend):
    hostel = make_rule("Hostel", "3000", "2500", "3500")
    stipend, _ = ledger.create_stipend_with_deductions(
        "STU001", "self-funded", Decimal("5000"), "BANK_TRANSFER", "JN-PAY", applied=[line(hostel, "3000")]
    )
    transaction = asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))
    oracle.will(ok("TXN-0001"))

    result = asyncio.run(transfer_engine.process(transaction.id))

    assert result.status is TransactionStatus.SUCCESS
    assert result.reference_number == "TXN-0001"
    assert result.attempt_count == 1
    assert result.correlation_id == f"{stipend.id}:1"
    assert result.completed_at is not None
    assert oracle.requests[0].idempotency_key == f"{stipend.id}:1"
    assert oracle.requests[0].amount == Decimal("2000.00")

    paid = ledger.get_stipend(stipend.id)
    assert paid.payment_status is PaymentStatus.PROCESSED
    assert paid.payment_date == result.completed_at
    assert paid.linked_transaction_id == result.id
    deductions = ledger.list_deductions(stipend.id)
    assert [(d.processing_status, d.transaction_id) for d in deductions] == [(ProcessingStatus.PROCESSED, result.id)]

    update = transaction_events(db, transaction.id)[-1]
    assert update.action is AuditAction.UPDATE
    assert update.old_snapshot["status"] == "PENDING"
    assert update.new_snapshot["status"] == "SUCCESS"
    assert update.new_snapshot["stipend_payment_status"] == "Processed"


def test_process_decline_marks_failed(db, transfer_engine, ledger, failed):
    stipend, transaction = failed

    assert transaction.status is TransactionStatus.FAILED
    assert transaction.error_kind is ErrorKind.UPSTREAM
    assert transaction.error_message == "insufficient institution funds"
    assert transaction.completed_at is None
    assert ledger.get_stipend(stipend.id).payment_status is PaymentStatus.PENDING
    assert transaction_events(db, transaction.id)[-1].new_snapshot["status"] == "FAILED"


def test_failed_transaction_still_blocks_initiate(transfer_engine, failed):
    stipend, _ = failed

    with pytest.raises(IllegalStateError):
        asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))


def test_process_upstream_error_marks_failed(transfer_engine, initiated, oracle):
    _, transaction = initiated
    oracle.will(UpstreamError("Settlement service error: 503"))

    result = asyncio.run(transfer_engine.process(transaction.id))

    assert result.status is TransactionStatus.FAILED
    assert result.error_kind is ErrorKind.UPSTREAM


def test_process_timeout_marks_failed(db, ctx, banking, oracle, settings, initiated):
    _, transaction = initiated
    engine = TransferEngine(db, ctx, banking=banking, oracle=oracle, source_account=settings.source_account, settlement_timeout=0.05)

    async def slow(request):
        await asyncio.sleep(1)
        return ok("TXN-TOO-LATE")

    oracle.will(slow)
    result = asyncio.run(engine.process(transaction.id))

    assert result.status is TransactionStatus.FAILED
    assert result.error_kind is ErrorKind.TIMEOUT
    assert "timed out" in result.error_message
    assert result.reference_number is None


def test_process_twice_rejected(transfer_engine, initiated):
    _, transaction = initiated
    asyncio.run(transfer_engine.process(transaction.id))

    with pytest.raises(IllegalStateError, match="cannot process a transaction in status SUCCESS"):
        asyncio.run(transfer_engine.process(transaction.id))


def test_process_missing_transaction(transfer_engine):
    with pytest.raises(NotFoundError):
        asyncio.run(transfer_engine.process(uuid.uuid4()))


def test_retry_settles_with_new_attempt(db, transfer_engine, ledger, oracle, failed):
    stipend, transaction = failed
    oracle.will(ok("TXN-RETRY"))

    result = asyncio.run(transfer_engine.retry(transaction.id))

    assert result.status is TransactionStatus.SUCCESS
    assert result.attempt_count == 2
    assert result.error_kind is None
    assert oracle.requests[-1].idempotency_key == f"{stipend.id}:2"
    assert ledger.get_stipend(stipend.id).payment_status is PaymentStatus.PROCESSED
    descriptions = [event.description for event in transaction_events(db, transaction.id)]
    assert descriptions[-2] == "Retry requested after attempt 1"
    assert descriptions[-1] == "Settlement attempt 2: SUCCESS"


def test_retry_requires_failed(transfer_engine, initiated):
    _, transaction = initiated

    with pytest.raises(IllegalStateError):
        asyncio.run(transfer_engine.retry(transaction.id))


def test_retry_requires_pending_stipend(transfer_engine, ledger, failed):
    stipend, transaction = failed
    asyncio.run(transfer_engine.decline_retry(transaction.id, "Account closed"))

    with pytest.raises(IllegalStateError, match="retry not allowed"):
        asyncio.run(transfer_engine.retry(transaction.id))

    assert transfer_engine.get_status(transaction.id).status is TransactionStatus.FAILED
    assert ledger.get_stipend(stipend.id).payment_status is PaymentStatus.FAILED


@pytest.mark.parametrize("target", [PaymentStatus.PROCESSED, PaymentStatus.FAILED])
def test_direct_payment_status_refused_while_transfer_open(db, transfer_engine, ledger, initiated, target):
    stipend, transaction = initiated

    with pytest.raises(IllegalStateError, match="has an open transaction"):
        ledger.set_payment_status(stipend.id, target, transaction_id=transaction.id)

    assert ledger.get_stipend(stipend.id).payment_status is PaymentStatus.PENDING
    assert transfer_engine.get_status(transaction.id).status is TransactionStatus.PENDING


def test_outcome_after_stipend_left_pending_keeps_reference(db, session_factory, transfer_engine, ledger, oracle, initiated):
    """Money moved but the stipend was closed meanwhile; the bank reference survives in the audit trail"""
    stipend, transaction = initiated

    async def close_stipend_then_approve(request):
        other_db = session_factory()
        try:
            other_db.query(Stipend).filter(Stipend.id == request.stipend_id).update(
                {Stipend.payment_status: PaymentStatus.FAILED}, synchronize_session=False
            )
            other_db.commit()
        finally:
            other_db.close()
        return ok("TXN-MONEY-MOVED")

    oracle.will(close_stipend_then_approve)
    with pytest.raises(IllegalStateError, match="cannot change from Failed to Processed"):
        asyncio.run(transfer_engine.process(transaction.id))

    assert transfer_engine.get_status(transaction.id).status is TransactionStatus.PROCESSING
    assert ledger.get_stipend(stipend.id).payment_status is PaymentStatus.FAILED
    failed_event = transaction_events(db, transaction.id)[-1]
    assert failed_event.outcome is AuditOutcome.FAILED
    assert "reference TXN-MONEY-MOVED" in failed_event.description
    assert failed_event.new_snapshot["settlement_reference"] == "TXN-MONEY-MOVED"
    assert failed_event.new_snapshot["settlement_ok"] is True
    assert failed_event.new_snapshot["correlation_id"] == f"{stipend.id}:1"


def test_cancel_pending(transfer_engine, initiated):
    stipend, transaction = initiated

    cancelled = asyncio.run(transfer_engine.cancel(transaction.id, "Duplicate request"))

    assert cancelled.status is TransactionStatus.CANCELLED
    assert cancelled.remarks == "Duplicate request"
    assert cancelled.completed_at is not None

    # A cancelled transaction no longer counts as open
    again = asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))
    assert again.status is TransactionStatus.PENDING


def test_cancel_requires_reason(transfer_engine, initiated):
    _, transaction = initiated

    with pytest.raises(InvalidInputError):
        asyncio.run(transfer_engine.cancel(transaction.id, "  "))


@pytest.mark.parametrize("reached", ["failed", "settled"])
def test_cancel_rejected_after_outcome(request, transfer_engine, reached):
    if reached == "failed":
        _, transaction = request.getfixturevalue("failed")
    else:
        _, transaction = request.getfixturevalue("initiated")
        transaction = asyncio.run(transfer_engine.process(transaction.id))

    with pytest.raises(IllegalStateError):
        asyncio.run(transfer_engine.cancel(transaction.id, "too late"))


def test_cancel_while_processing_wins(db, ctx, session_factory, banking, oracle, settings, transfer_engine, ledger, initiated):
    """The oracle approves after the transaction was cancelled; the cancellation stands"""
    stipend, transaction = initiated

    async def cancel_then_approve(request):
        other_db = session_factory()
        try:
            other = TransferEngine(
                other_db, ctx, banking=banking, oracle=oracle,
                source_account=settings.source_account, settlement_timeout=settings.settlement_timeout,
            )
            await other.cancel(request.transaction_id, "Student withdrew")
        finally:
            other_db.close()
        return ok("TXN-LATE")

    oracle.will(cancel_then_approve)
    result = asyncio.run(transfer_engine.process(transaction.id))

    assert result.status is TransactionStatus.CANCELLED
    assert result.reference_number is None
    assert ledger.get_stipend(stipend.id).payment_status is PaymentStatus.PENDING
    late = transaction_events(db, transaction.id)[-1]
    assert late.description.startswith("Late settlement outcome ok (TXN-LATE) ignored")


def test_decline_retry_fails_stipend(db, transfer_engine, ledger, failed):
    stipend, transaction = failed

    result = asyncio.run(transfer_engine.decline_retry(transaction.id, "Account closed"))

    assert result.status is TransactionStatus.FAILED
    assert result.remarks == "Account closed"
    assert ledger.get_stipend(stipend.id).payment_status is PaymentStatus.FAILED
    stipend_update = (
        db.query(AuditEvent)
        .filter(AuditEvent.entity_kind == EntityKind.STIPEND, AuditEvent.action == AuditAction.UPDATE)
        .one()
    )
    assert stipend_update.new_snapshot["payment_status"] == "Failed"

    with pytest.raises(IllegalStateError):
        asyncio.run(transfer_engine.retry(transaction.id))


def test_decline_retry_requires_failed(transfer_engine, initiated):
    _, transaction = initiated

    with pytest.raises(IllegalStateError):
        asyncio.run(transfer_engine.decline_retry(transaction.id, "no"))


def test_list_transactions(transfer_engine, initiated, make_stipend):
    stipend, transaction = initiated
    asyncio.run(transfer_engine.cancel(transaction.id, "re-issue"))
    asyncio.run(transfer_engine.initiate(stipend.id, "BANK_TRANSFER"))
    other = make_stipend("700", student_id="STU002")
    asyncio.run(transfer_engine.initiate(other.id, "UPI"))

    assert len(transfer_engine.list_by_stipend(stipend.id)) == 2
    transactions, total = transfer_engine.list_by_student("STU001")
    assert total == 2
    assert {t.status for t in transactions} == {TransactionStatus.CANCELLED, TransactionStatus.PENDING}


def test_list_by_missing_stipend(transfer_engine):
    with pytest.raises(NotFoundError):
        transfer_engine.list_by_stipend(uuid.uuid4())
