"""Stipend ledger: stipend records, their applied deductions, and the payment-status machine"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stipend_service.domain.enums import AuditAction, EntityKind, PaymentStatus, StipendClass, TransactionStatus
from stipend_service.domain.exceptions import (
    DuplicateJournalError,
    IllegalStateError,
    InvalidInputError,
    InvariantViolationError,
    NotFoundError,
    StipendNotFoundError,
)
from stipend_service.domain.limits import ValidationLimits, normalize_page
from stipend_service.domain.models import AppliedDeduction
from stipend_service.domain.state_machines import ensure_payment_transition
from stipend_service.domain.validation import (
    ensure_valid,
    parse_enum,
    validate_deduction_against_rule,
    validate_stipend_input,
    validate_total_deductions,
)
from stipend_service.infrastructure.database.models import Deduction, Stipend, Transaction
from stipend_service.infrastructure.database.repositories import (
    DeductionRepository,
    RuleRepository,
    StipendRepository,
    TransactionRepository,
)
from stipend_service.infrastructure.observability.metrics import record_deductions, record_stipend_created
from stipend_service.services.audit import AuditTrail, snapshot
from stipend_service.services.context import RequestContext
from stipend_service.utils.date_utils import ensure_utc, utcnow
from stipend_service.utils.money import format_money, to_money

logger = logging.getLogger(__name__)


class StipendLedger:
    """Owns Stipend and Deduction rows"""

    def __init__(self, db: Session, ctx: RequestContext, audit: Optional[AuditTrail] = None):
        self.db = db
        self.ctx = ctx
        self.stipends = StipendRepository(db)
        self.deductions = DeductionRepository(db)
        self.rules = RuleRepository(db)
        self.transactions = TransactionRepository(db)
        self.audit = audit or AuditTrail(db, ctx)

    def _extra(self, **fields) -> dict:
        return {"request_id": self.ctx.request_id, "actor": self.ctx.actor, **fields}

    # -- creation -----------------------------------------------------------

    def _validate_new(self, student_id, stipend_class, base_amount, payment_method, journal_number, notes) -> StipendClass:
        warnings = ensure_valid(
            validate_stipend_input(student_id, stipend_class, base_amount, payment_method, journal_number, notes),
            "invalid stipend",
        )
        for warning in warnings:
            logger.warning(warning, extra=self._extra(student_id=student_id))
        if self.stipends.journal_taken(journal_number):
            raise DuplicateJournalError(f"journal number '{journal_number}' already used")
        return parse_enum(StipendClass, stipend_class)

    def _insert_stipend(self, student_id, stipend_class, base_amount, payment_method, journal_number, notes) -> Stipend:
        stipend = self.stipends.add(
            Stipend(
                student_id=student_id,
                amount=to_money(base_amount),
                stipend_class=stipend_class,
                payment_status=PaymentStatus.PENDING,
                payment_method=payment_method,
                journal_number=journal_number,
                notes=notes,
            )
        )
        self.audit.record(
            AuditAction.CREATE,
            EntityKind.STIPEND,
            stipend.id,
            f"Created stipend {journal_number} for student {student_id}: {format_money(stipend.amount)}",
        )
        return stipend

    def create_stipend(
        self,
        student_id: str,
        stipend_class,
        base_amount: Decimal,
        payment_method: str,
        journal_number: str,
        notes: Optional[str] = None,
    ) -> Stipend:
        """
        Persist a Pending stipend.

        Raises:
            InvalidInputError: a field fails validation
            DuplicateJournalError: journal number already used
        """
        return self.create_stipend_with_deductions(
            student_id, stipend_class, base_amount, payment_method, journal_number, notes, applied=()
        )[0]

    def create_stipend_with_deductions(
        self,
        student_id: str,
        stipend_class,
        base_amount: Decimal,
        payment_method: str,
        journal_number: str,
        notes: Optional[str] = None,
        applied: Sequence[AppliedDeduction] = (),
    ) -> Tuple[Stipend, List[Deduction]]:
        """Create a stipend and its initial deductions in one unit of work; nothing is visible if either step fails"""
        stipend_class = self._validate_new(student_id, stipend_class, base_amount, payment_method, journal_number, notes)

        try:
            stipend = self._insert_stipend(student_id, stipend_class, base_amount, payment_method, journal_number, notes)
            rows = self._insert_deductions(stipend, applied) if applied else []
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if self.stipends.journal_taken(journal_number):
                raise DuplicateJournalError(f"journal number '{journal_number}' already used") from e
            self.audit.abort(e, AuditAction.CREATE, EntityKind.STIPEND, None, f"Create stipend {journal_number}")
            raise
        except Exception as e:
            self.audit.abort(e, AuditAction.CREATE, EntityKind.STIPEND, None, f"Create stipend {journal_number}")
            raise

        record_stipend_created(stipend_class.value)
        record_deductions((row.type_tag, row.amount) for row in rows)
        logger.info(
            "Stipend created",
            extra=self._extra(stipend_id=str(stipend.id), student_id=student_id, deductions=len(rows)),
        )
        return stipend, rows

    # -- deductions ---------------------------------------------------------

    def _insert_deductions(self, stipend: Stipend, applied: Sequence[AppliedDeduction]) -> List[Deduction]:
        if stipend.payment_status is not PaymentStatus.PENDING:
            raise IllegalStateError(f"stipend {stipend.id} is {stipend.payment_status.value}; deductions are closed")

        entries = [line for line in applied if line.amount != 0]
        if not entries:
            return []

        rules = {rule.id: rule for rule in self.rules.get_many(line.rule_id for line in entries)}
        missing = [str(line.rule_id) for line in entries if line.rule_id not in rules]
        if missing:
            raise NotFoundError(f"deduction rules not found: {', '.join(missing)}")

        existing = self.deductions.total_for_stipend(stipend.id)
        remaining = stipend.amount - existing
        errors: List[str] = []
        for line in entries:
            rule = rules[line.rule_id]
            amount = to_money(line.amount)
            errors.extend(
                validate_deduction_against_rule(amount, rule.name, rule.min_amount, rule.max_amount, remaining).errors
            )
            remaining -= amount
        total_check = validate_total_deductions(stipend.amount, [existing] + [to_money(line.amount) for line in entries])
        errors.extend(total_check.errors)
        if errors:
            raise InvariantViolationError(f"deductions rejected for stipend {stipend.id}", errors=errors)
        for warning in total_check.warnings:
            logger.warning(warning, extra=self._extra(stipend_id=str(stipend.id)))

        now = utcnow()
        rows = self.deductions.add_all(
            [
                Deduction(
                    student_id=stipend.student_id,
                    stipend_id=stipend.id,
                    deduction_rule_id=line.rule_id,
                    amount=to_money(line.amount),
                    type_tag=rules[line.rule_id].type_tag,
                    description=rules[line.rule_id].description or "",
                    deduction_date=now,
                )
                for line in entries
            ]
        )
        total = sum((row.amount for row in rows), Decimal("0"))
        self.audit.record(
            AuditAction.CREATE,
            EntityKind.DEDUCTION,
            stipend.id,
            f"Applied {len(rows)} deductions totalling {format_money(total)} to stipend {stipend.journal_number}",
        )
        return rows

    def apply_deductions(self, stipend_id: uuid.UUID, applied: Sequence[AppliedDeduction]) -> List[Deduction]:
        """
        Persist a batch of deductions atomically.

        Zero-amount lines (rules skipped by the calculator) are not stored.

        Raises:
            StipendNotFoundError: no stipend with this id
            NotFoundError: a line references an unknown rule
            IllegalStateError: the stipend is no longer Pending
            InvariantViolationError: a line breaks its rule bounds, or the batch would exceed the stipend
        """
        stipend = self.lock(stipend_id)
        try:
            rows = self._insert_deductions(stipend, applied)
            self.db.commit()
        except Exception as e:
            self.audit.abort(e, AuditAction.CREATE, EntityKind.DEDUCTION, stipend_id, "Apply deductions")
            raise

        record_deductions((row.type_tag, row.amount) for row in rows)
        logger.info("Deductions applied", extra=self._extra(stipend_id=str(stipend_id), deductions=len(rows)))
        return rows

    # -- reads --------------------------------------------------------------

    def lock(self, stipend_id: uuid.UUID) -> Stipend:
        """Row-locked read for a lifecycle write; raises StipendNotFoundError"""
        stipend = self.stipends.get_for_update(stipend_id)
        if stipend is None:
            self.db.rollback()
            raise StipendNotFoundError(f"stipend {stipend_id} not found")
        return stipend

    def get_stipend(self, stipend_id: uuid.UUID) -> Stipend:
        stipend = self.stipends.get(stipend_id)
        if stipend is None:
            raise StipendNotFoundError(f"stipend {stipend_id} not found")
        return stipend

    def list_for_student(self, student_id: str, limit: Optional[int] = None, offset: Optional[int] = None) -> Tuple[List[Stipend], int]:
        limit, offset = normalize_page(limit, offset)
        return self.stipends.list_for_student(student_id, limit, offset)

    def list_deductions(self, stipend_id: uuid.UUID) -> List[Deduction]:
        self.get_stipend(stipend_id)
        return self.deductions.list_for_stipend(stipend_id)

    def net_amount(self, stipend_id: uuid.UUID) -> Decimal:
        """Base amount minus every persisted deduction"""
        stipend = self.get_stipend(stipend_id)
        return to_money(stipend.amount - self.deductions.total_for_stipend(stipend_id))

    # -- payment status -----------------------------------------------------

    def apply_payment_status(
        self,
        stipend: Stipend,
        new_status: PaymentStatus,
        when: Optional[datetime] = None,
        transaction_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """
        Move a locked stipend through the payment-status machine inside the caller's unit of work.

        Returns False for a self-loop, which changes nothing.
        """
        if stipend.payment_status is new_status:
            logger.warning(
                "Stipend payment status unchanged",
                extra=self._extra(stipend_id=str(stipend.id), payment_status=new_status.value),
            )
            return False
        ensure_payment_transition(stipend.payment_status, new_status)

        stipend.payment_status = new_status
        if new_status is PaymentStatus.PROCESSED:
            stipend.payment_date = ensure_utc(when) or utcnow()
            if transaction_id is not None:
                stipend.linked_transaction_id = transaction_id
                self.deductions.mark_processed(stipend.id, transaction_id)
        self.db.flush()
        return True

    def _check_direct_write(
        self, stipend: Stipend, new_status: PaymentStatus, transaction_id: Optional[uuid.UUID]
    ) -> Optional[Transaction]:
        """Guards for status writes that do not come from the transfer engine"""
        open_transaction = self.transactions.find_open(stipend.id)
        if open_transaction is not None:
            raise IllegalStateError(
                f"stipend {stipend.id} has an open transaction {open_transaction.id} "
                f"({open_transaction.status.value}); its payment status follows the transfer"
            )
        if new_status is not PaymentStatus.PROCESSED:
            return None
        if transaction_id is None:
            raise IllegalStateError(f"stipend {stipend.id} can only be Processed by a SUCCESS transaction")
        settled = self.transactions.get(transaction_id)
        if settled is None or settled.stipend_id != stipend.id or settled.status is not TransactionStatus.SUCCESS:
            raise IllegalStateError(f"transaction {transaction_id} is not a SUCCESS transaction of stipend {stipend.id}")
        return settled

    def set_payment_status(
        self,
        stipend_id: uuid.UUID,
        new_status,
        when: Optional[datetime] = None,
        transaction_id: Optional[uuid.UUID] = None,
    ) -> Stipend:
        """
        Pending -> Processed | Failed; Processed and Failed are terminal.

        While a transaction is open the stipend's status follows the transfer
        engine only. Processed needs the SUCCESS transaction that paid the
        stipend; `when` defaults to its completion time.

        Raises:
            StipendNotFoundError: no stipend with this id
            IllegalStateError: the transition is not allowed, a transaction is open,
                or Processed is requested without a settled transaction
        """
        new_status = parse_enum(PaymentStatus, new_status)
        stipend = self.lock(stipend_id)
        old = snapshot(stipend)
        try:
            if stipend.payment_status is not new_status:
                settled = self._check_direct_write(stipend, new_status, transaction_id)
                if settled is not None and when is None:
                    when = settled.completed_at
            changed = self.apply_payment_status(stipend, new_status, when, transaction_id)
            if changed:
                self.audit.record(
                    AuditAction.UPDATE,
                    EntityKind.STIPEND,
                    stipend.id,
                    f"Stipend payment status {old['payment_status']} -> {new_status.value}",
                    old=old,
                    new=snapshot(stipend),
                )
            self.db.commit()
        except Exception as e:
            self.audit.abort(e, AuditAction.UPDATE, EntityKind.STIPEND, stipend_id, f"Set payment status {new_status.value}", old=old)
            raise
        return stipend

    def update_notes(self, stipend_id: uuid.UUID, notes: Optional[str]) -> Stipend:
        if notes is not None and len(notes) > ValidationLimits.MAX_NOTES_LEN:
            raise InvalidInputError(f"notes must be at most {ValidationLimits.MAX_NOTES_LEN} characters")
        stipend = self.lock(stipend_id)
        old = snapshot(stipend)
        try:
            stipend.notes = notes
            self.db.flush()
            self.audit.record(AuditAction.UPDATE, EntityKind.STIPEND, stipend.id, "Updated stipend notes", old=old, new=snapshot(stipend))
            self.db.commit()
        except Exception as e:
            self.audit.abort(e, AuditAction.UPDATE, EntityKind.STIPEND, stipend_id, "Update stipend notes", old=old)
            raise
        return stipend
