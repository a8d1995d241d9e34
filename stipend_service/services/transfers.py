"""
Transfer engine: drives a stipend's net amount through settlement.

    PENDING --process--> PROCESSING --ok--> SUCCESS
       |                     |--fail/timeout--> FAILED --retry--> PENDING
       |                     `--cancel--> CANCELLED
       `--cancel--> CANCELLED

Process commits PROCESSING before calling the oracle, so a concurrent Process
sees IllegalState and a concurrent Cancel can still win. The outcome is applied
under a fresh row lock; SUCCESS marks the stipend Processed in the same unit of
work. Oracle failures and timeouts become FAILED transactions, not request errors.
"""

import asyncio
import logging
import time
import uuid
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stipend_service.domain.enums import (
    AuditAction,
    EntityKind,
    ErrorKind,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
)
from stipend_service.domain.exceptions import (
    DeadlineExceededError,
    IllegalStateError,
    InvalidInputError,
    InvalidStipendAmountError,
    NotFoundError,
    UpstreamError,
)
from stipend_service.domain.limits import ValidationLimits, normalize_page
from stipend_service.domain.models import BankDetails, SettlementRequest, SettlementResult
from stipend_service.domain.state_machines import ensure_transaction_transition
from stipend_service.domain.validation import ensure_valid, validate_payment_method
from stipend_service.infrastructure.database.models import Transaction
from stipend_service.infrastructure.database.repositories import TransactionRepository
from stipend_service.infrastructure.observability.logging import log_transfer_outcome
from stipend_service.infrastructure.observability.metrics import (
    banking_lookup_failures_counter,
    record_transfer_outcome,
    settlement_latency_histogram,
    settlement_timeout_counter,
)
from stipend_service.services.audit import AuditTrail, snapshot
from stipend_service.services.context import RequestContext
from stipend_service.services.ledger import StipendLedger
from stipend_service.utils.date_utils import utcnow
from stipend_service.utils.money import format_money

logger = logging.getLogger(__name__)


def idempotency_key(stipend_id: uuid.UUID, attempt: int) -> str:
    """Oracle deduplication key: one per (stipend, attempt sequence)"""
    return f"{stipend_id}:{attempt}"


class TransferEngine:
    """Owns Transaction rows"""

    def __init__(
        self,
        db: Session,
        ctx: RequestContext,
        banking,
        oracle,
        source_account: str,
        settlement_timeout: float,
        ledger: Optional[StipendLedger] = None,
        audit: Optional[AuditTrail] = None,
    ):
        self.db = db
        self.ctx = ctx
        self.banking = banking
        self.oracle = oracle
        self.source_account = source_account
        self.settlement_timeout = settlement_timeout
        self.audit = audit or AuditTrail(db, ctx)
        self.ledger = ledger or StipendLedger(db, ctx, audit=self.audit)
        self.repo = TransactionRepository(db)

    def _extra(self, **fields) -> dict:
        return {"request_id": self.ctx.request_id, "actor": self.ctx.actor, **fields}

    def _lock(self, transaction_id: uuid.UUID) -> Transaction:
        transaction = self.repo.get_for_update(transaction_id)
        if transaction is None:
            self.db.rollback()
            raise NotFoundError(f"transaction {transaction_id} not found")
        return transaction

    def _require(self, transaction: Transaction, target: TransactionStatus, operation: str) -> None:
        try:
            ensure_transaction_transition(transaction.status, target, operation)
        except IllegalStateError:
            self.db.rollback()
            raise

    # -- initiate -----------------------------------------------------------

    async def _resolve_bank_details(self, student_id: str) -> BankDetails:
        try:
            return await asyncio.wait_for(self.banking.get_bank_details(student_id), timeout=self.ctx.remaining())
        except asyncio.TimeoutError as e:
            banking_lookup_failures_counter.inc()
            raise DeadlineExceededError(f"bank details lookup for student {student_id} exceeded the request deadline") from e
        except UpstreamError:
            banking_lookup_failures_counter.inc()
            raise

    async def initiate(self, stipend_id: uuid.UUID, payment_method: str) -> Transaction:
        """
        Open a PENDING transaction for the stipend's net amount.

        Raises:
            StipendNotFoundError: no stipend with this id
            InvalidInputError: payment method missing or too long
            InvalidStipendAmountError: the stipend amount is not positive
            BankDetailsMissingError: the student has no bank account on file
            IllegalStateError: stipend not Pending, or an open transaction exists
            UpstreamError / DeadlineExceededError: the banking lookup failed
        """
        ensure_valid(validate_payment_method(payment_method), "invalid transfer")
        stipend = self.ledger.get_stipend(stipend_id)
        if stipend.payment_status is not PaymentStatus.PENDING:
            raise IllegalStateError(f"stipend {stipend_id} is {stipend.payment_status.value}")
        if stipend.amount <= 0:
            raise InvalidStipendAmountError(f"invalid stipend amount: {format_money(stipend.amount)}")
        net_amount = self.ledger.net_amount(stipend_id)
        if self.repo.find_open(stipend_id) is not None:
            raise IllegalStateError(f"stipend {stipend_id} already has an open transaction")

        bank = await self._resolve_bank_details(stipend.student_id)

        stipend = self.ledger.lock(stipend_id)
        try:
            if stipend.payment_status is not PaymentStatus.PENDING:
                raise IllegalStateError(f"stipend {stipend_id} is {stipend.payment_status.value}")
            if self.repo.find_open(stipend_id) is not None:
                raise IllegalStateError(f"stipend {stipend_id} already has an open transaction")
            transaction = self.repo.add(
                Transaction(
                    stipend_id=stipend.id,
                    student_id=stipend.student_id,
                    amount=net_amount,
                    source_account=self.source_account,
                    destination_account=bank.account_number,
                    destination_bank=bank.bank_id,
                    status=TransactionStatus.PENDING,
                    payment_method=payment_method,
                    transaction_type=TransactionType.STIPEND,
                    initiated_at=utcnow(),
                )
            )
            self.audit.record(
                AuditAction.CREATE,
                EntityKind.TRANSACTION,
                transaction.id,
                f"Initiated {format_money(net_amount)} transfer for stipend {stipend.journal_number}",
            )
            self.db.commit()
        except IntegrityError as e:
            error = IllegalStateError(f"stipend {stipend_id} already has an open transaction")
            self.audit.abort(error, AuditAction.CREATE, EntityKind.TRANSACTION, None, f"Initiate transfer for stipend {stipend_id}")
            raise error from e
        except Exception as e:
            self.audit.abort(e, AuditAction.CREATE, EntityKind.TRANSACTION, None, f"Initiate transfer for stipend {stipend_id}")
            raise

        logger.info("Transfer initiated", extra=self._extra(transaction_id=str(transaction.id), stipend_id=str(stipend_id)))
        return transaction

    # -- process ------------------------------------------------------------

    async def _settle(self, request: SettlementRequest) -> Tuple[Optional[SettlementResult], Optional[ErrorKind], Optional[str]]:
        """Call the oracle within the remaining deadline; returns (result, error_kind, error_text)"""
        wait_seconds = min(self.ctx.remaining(), self.settlement_timeout)
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(self.oracle.settle(request), timeout=wait_seconds)
        except asyncio.TimeoutError:
            settlement_timeout_counter.inc()
            return None, ErrorKind.TIMEOUT, f"settlement timed out after {wait_seconds:.2f}s (correlation id {request.idempotency_key})"
        except DeadlineExceededError as e:
            settlement_timeout_counter.inc()
            return None, ErrorKind.TIMEOUT, str(e)
        except UpstreamError as e:
            return None, ErrorKind.UPSTREAM, str(e)
        finally:
            settlement_latency_histogram.observe(time.monotonic() - start)

        if result.ok:
            return result, None, None
        return result, ErrorKind.UPSTREAM, result.error or "settlement declined"

    async def process(self, transaction_id: uuid.UUID) -> Transaction:
        """
        Settle a PENDING transaction.

        Raises:
            NotFoundError: no transaction with this id
            IllegalStateError: the transaction is not PENDING
        """
        started = time.monotonic()
        transaction = self._lock(transaction_id)
        self._require(transaction, TransactionStatus.PROCESSING, "process")

        before = snapshot(transaction)
        transaction.status = TransactionStatus.PROCESSING
        transaction.processed_at = utcnow()
        transaction.attempt_count = (transaction.attempt_count or 0) + 1
        transaction.correlation_id = idempotency_key(transaction.stipend_id, transaction.attempt_count)
        self.db.commit()

        request = SettlementRequest(
            transaction_id=transaction.id,
            stipend_id=transaction.stipend_id,
            student_id=transaction.student_id,
            amount=transaction.amount,
            source_account=transaction.source_account,
            destination_account=transaction.destination_account,
            destination_bank=transaction.destination_bank,
            payment_method=transaction.payment_method,
            idempotency_key=transaction.correlation_id,
        )
        result, error_kind, error_text = await self._settle(request)

        transaction = self._lock(transaction_id)
        try:
            if transaction.status is not TransactionStatus.PROCESSING:
                return self._record_late_outcome(transaction, before, result, error_text)

            stipend_status = None
            if error_kind is None:
                transaction.status = TransactionStatus.SUCCESS
                transaction.reference_number = result.reference_number
                transaction.completed_at = utcnow()
                transaction.error_message = None
                transaction.error_kind = None
                stipend = self.ledger.lock(transaction.stipend_id)
                self.ledger.apply_payment_status(
                    stipend, PaymentStatus.PROCESSED, when=transaction.completed_at, transaction_id=transaction.id
                )
                stipend_status = stipend.payment_status.value
            else:
                transaction.status = TransactionStatus.FAILED
                transaction.error_message = error_text
                transaction.error_kind = error_kind
            self.db.flush()

            after = snapshot(transaction)
            if stipend_status is not None:
                after["stipend_payment_status"] = stipend_status
            self.audit.record(
                AuditAction.UPDATE,
                EntityKind.TRANSACTION,
                transaction.id,
                f"Settlement attempt {transaction.attempt_count}: {transaction.status.value}",
                old=before,
                new=after,
            )
            self.db.commit()
        except Exception as e:
            settlement = {
                "settlement_ok": error_kind is None,
                "settlement_reference": result.reference_number if result is not None else None,
                "settlement_error": error_text,
                "correlation_id": request.idempotency_key,
            }
            self.audit.abort(
                e,
                AuditAction.UPDATE,
                EntityKind.TRANSACTION,
                transaction_id,
                f"Record settlement outcome (reference {settlement['settlement_reference'] or 'none'})",
                old=before,
                new=settlement,
            )
            logger.error(
                f"Settlement outcome could not be recorded: {e}",
                extra=self._extra(transaction_id=str(transaction_id), **settlement),
            )
            raise

        record_transfer_outcome(transaction.status.value)
        log_transfer_outcome(
            self.ctx.request_id,
            str(transaction.id),
            str(transaction.stipend_id),
            transaction.status.value,
            transaction.attempt_count,
            (time.monotonic() - started) * 1000,
        )
        return transaction

    def _record_late_outcome(
        self,
        transaction: Transaction,
        before: dict,
        result: Optional[SettlementResult],
        error_text: Optional[str],
    ) -> Transaction:
        """The transaction left PROCESSING (cancelled) while the oracle was outstanding; keep its state, log the outcome"""
        outcome = f"ok ({result.reference_number})" if result is not None and result.ok else f"failed ({error_text})"
        logger.warning(
            "Settlement outcome arrived after transaction left PROCESSING",
            extra=self._extra(
                transaction_id=str(transaction.id),
                transaction_status=transaction.status.value,
                correlation_id=transaction.correlation_id,
                settlement_outcome=outcome,
            ),
        )
        self.audit.record(
            AuditAction.UPDATE,
            EntityKind.TRANSACTION,
            transaction.id,
            f"Late settlement outcome {outcome} ignored; transaction is {transaction.status.value}",
            old=before,
            new=snapshot(transaction),
        )
        self.db.commit()
        return transaction

    # -- cancel / retry -----------------------------------------------------

    async def cancel(self, transaction_id: uuid.UUID, reason: str) -> Transaction:
        """
        Cancel a PENDING or PROCESSING transaction.

        Raises:
            InvalidInputError: reason missing or too long
            NotFoundError: no transaction with this id
            IllegalStateError: the transaction is FAILED, SUCCESS or CANCELLED
        """
        if not reason or not reason.strip():
            raise InvalidInputError("cancellation reason is required")
        if len(reason) > ValidationLimits.MAX_REASON_LEN:
            raise InvalidInputError(f"cancellation reason must be at most {ValidationLimits.MAX_REASON_LEN} characters")

        transaction = self._lock(transaction_id)
        self._require(transaction, TransactionStatus.CANCELLED, "cancel")

        before = snapshot(transaction)
        try:
            transaction.status = TransactionStatus.CANCELLED
            transaction.remarks = reason
            transaction.completed_at = utcnow()
            self.db.flush()
            self.audit.record(
                AuditAction.UPDATE,
                EntityKind.TRANSACTION,
                transaction.id,
                f"Cancelled: {reason}",
                old=before,
                new=snapshot(transaction),
            )
            self.db.commit()
        except Exception as e:
            self.audit.abort(e, AuditAction.UPDATE, EntityKind.TRANSACTION, transaction_id, "Cancel transaction", old=before)
            raise

        record_transfer_outcome(TransactionStatus.CANCELLED.value)
        logger.info("Transfer cancelled", extra=self._extra(transaction_id=str(transaction_id)))
        return transaction

    async def retry(self, transaction_id: uuid.UUID) -> Transaction:
        """
        Reset a FAILED transaction to PENDING and process it again.

        Raises:
            NotFoundError: no transaction with this id
            IllegalStateError: the transaction is not FAILED, or its stipend is no longer Pending
        """
        transaction = self._lock(transaction_id)
        self._require(transaction, TransactionStatus.PENDING, "retry")
        stipend = self.ledger.get_stipend(transaction.stipend_id)
        if stipend.payment_status is not PaymentStatus.PENDING:
            self.db.rollback()
            raise IllegalStateError(f"stipend {stipend.id} is {stipend.payment_status.value}; retry not allowed")

        before = snapshot(transaction)
        try:
            transaction.status = TransactionStatus.PENDING
            transaction.error_message = None
            transaction.error_kind = None
            self.db.flush()
            self.audit.record(
                AuditAction.UPDATE,
                EntityKind.TRANSACTION,
                transaction.id,
                f"Retry requested after attempt {transaction.attempt_count}",
                old=before,
                new=snapshot(transaction),
            )
            self.db.commit()
        except Exception as e:
            self.audit.abort(e, AuditAction.UPDATE, EntityKind.TRANSACTION, transaction_id, "Retry transaction", old=before)
            raise

        return await self.process(transaction_id)

    async def decline_retry(self, transaction_id: uuid.UUID, reason: str) -> Transaction:
        """
        Operator decision not to retry a FAILED transaction: the stipend becomes Failed.

        Raises:
            NotFoundError: no transaction with this id
            IllegalStateError: the transaction is not FAILED
        """
        if not reason or not reason.strip():
            raise InvalidInputError("a reason is required to decline a retry")

        transaction = self._lock(transaction_id)
        if transaction.status is not TransactionStatus.FAILED:
            self.db.rollback()
            raise IllegalStateError(f"cannot decline retry of a transaction in status {transaction.status.value}")

        before = snapshot(transaction)
        try:
            stipend = self.ledger.lock(transaction.stipend_id)
            stipend_before = snapshot(stipend)
            transaction.remarks = reason
            self.ledger.apply_payment_status(stipend, PaymentStatus.FAILED)
            self.db.flush()
            self.audit.record(
                AuditAction.UPDATE,
                EntityKind.TRANSACTION,
                transaction.id,
                f"Retry declined: {reason}",
                old=before,
                new=snapshot(transaction),
            )
            self.audit.record(
                AuditAction.UPDATE,
                EntityKind.STIPEND,
                stipend.id,
                f"Stipend payment status {stipend_before['payment_status']} -> {stipend.payment_status.value}",
                old=stipend_before,
                new=snapshot(stipend),
            )
            self.db.commit()
        except Exception as e:
            self.audit.abort(e, AuditAction.UPDATE, EntityKind.TRANSACTION, transaction_id, "Decline retry", old=before)
            raise

        logger.info("Transfer retry declined", extra=self._extra(transaction_id=str(transaction_id)))
        return transaction

    # -- reads --------------------------------------------------------------

    def get_status(self, transaction_id: uuid.UUID) -> Transaction:
        transaction = self.repo.get(transaction_id)
        if transaction is None:
            raise NotFoundError(f"transaction {transaction_id} not found")
        return transaction

    def list_by_stipend(self, stipend_id: uuid.UUID) -> List[Transaction]:
        self.ledger.get_stipend(stipend_id)
        return self.repo.list_by_stipend(stipend_id)

    def list_by_student(self, student_id: str, limit: Optional[int] = None, offset: Optional[int] = None) -> Tuple[List[Transaction], int]:
        limit, offset = normalize_page(limit, offset)
        return self.repo.list_by_student(student_id, limit, offset)
