"""Data access layer for stipend entities"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from stipend_service.domain.enums import (
    AuditAction,
    AuditOutcome,
    EntityKind,
    OPEN_TRANSACTION_STATUSES,
    PaymentStatus,
    ProcessingStatus,
    StipendClass,
    TransactionStatus,
    TransactionType,
)
from stipend_service.utils.money import to_money
from stipend_service.infrastructure.database.models import (
    AuditEvent,
    Deduction,
    DeductionRule,
    Stipend,
    Transaction,
)


def _page(query: Query, limit: int, offset: int) -> Tuple[list, int]:
    total = query.order_by(None).count()
    return query.limit(limit).offset(offset).all(), total


def _window(query: Query, column, start: Optional[datetime], end: Optional[datetime]) -> Query:
    if start is not None:
        query = query.filter(column >= start)
    if end is not None:
        query = query.filter(column <= end)
    return query


def _amount_range(query: Query, column, min_amount: Optional[Decimal], max_amount: Optional[Decimal]) -> Query:
    if min_amount is not None:
        query = query.filter(column >= min_amount)
    if max_amount is not None:
        query = query.filter(column <= max_amount)
    return query


class RuleRepository:
    """Repository for deduction rules"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, rule: DeductionRule) -> DeductionRule:
        self.db.add(rule)
        self.db.flush()  # Surface unique-name violations before commit
        return rule

    def get(self, rule_id: uuid.UUID) -> Optional[DeductionRule]:
        return self.db.query(DeductionRule).filter(DeductionRule.id == rule_id).first()

    def get_for_update(self, rule_id: uuid.UUID) -> Optional[DeductionRule]:
        return (
            self.db.query(DeductionRule)
            .filter(DeductionRule.id == rule_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    def get_many(self, rule_ids: Iterable[uuid.UUID]) -> List[DeductionRule]:
        ids = list(rule_ids)
        if not ids:
            return []
        return self.db.query(DeductionRule).filter(DeductionRule.id.in_(ids)).all()

    def name_taken(self, name: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        query = self.db.query(DeductionRule.id).filter(DeductionRule.name == name)
        if exclude_id is not None:
            query = query.filter(DeductionRule.id != exclude_id)
        return query.first() is not None

    def _ordered(self, query: Query) -> Query:
        return query.order_by(DeductionRule.priority.desc(), DeductionRule.name.asc())

    def list_active(self, limit: int, offset: int) -> Tuple[List[DeductionRule], int]:
        query = self._ordered(self.db.query(DeductionRule).filter(DeductionRule.is_active.is_(True)))
        return _page(query, limit, offset)

    def list_applicable(self, stipend_class: StipendClass) -> List[DeductionRule]:
        if stipend_class is StipendClass.FULL_SCHOLARSHIP:
            flag = DeductionRule.applies_to_full_scholar
        else:
            flag = DeductionRule.applies_to_self_funded
        query = self.db.query(DeductionRule).filter(DeductionRule.is_active.is_(True), flag.is_(True))
        return self._ordered(query).all()

    def search(
        self,
        name: Optional[str] = None,
        type_tag: Optional[str] = None,
        is_active: Optional[bool] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Tuple[List[DeductionRule], int]:
        query = self.db.query(DeductionRule)
        if name:
            query = query.filter(DeductionRule.name.contains(name, autoescape=True))
        if type_tag:
            query = query.filter(DeductionRule.type_tag == type_tag)
        if is_active is not None:
            query = query.filter(DeductionRule.is_active.is_(is_active))
        return _page(self._ordered(query), limit, offset)


class StipendRepository:
    """Repository for stipend records"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, stipend: Stipend) -> Stipend:
        self.db.add(stipend)
        self.db.flush()
        return stipend

    def get(self, stipend_id: uuid.UUID) -> Optional[Stipend]:
        return self.db.query(Stipend).filter(Stipend.id == stipend_id).first()

    def get_for_update(self, stipend_id: uuid.UUID) -> Optional[Stipend]:
        """Row-locked read; serialises lifecycle writes on one stipend"""
        return (
            self.db.query(Stipend)
            .filter(Stipend.id == stipend_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    def journal_taken(self, journal_number: str) -> bool:
        return self.db.query(Stipend.id).filter(Stipend.journal_number == journal_number).first() is not None

    def list_for_student(self, student_id: str, limit: int, offset: int) -> Tuple[List[Stipend], int]:
        query = (
            self.db.query(Stipend)
            .filter(Stipend.student_id == student_id)
            .order_by(Stipend.created_at.desc())
        )
        return _page(query, limit, offset)

    def search(
        self,
        student_id: Optional[str] = None,
        payment_status: Optional[PaymentStatus] = None,
        stipend_class: Optional[StipendClass] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Tuple[List[Stipend], int]:
        query = self.filtered(student_id, payment_status, stipend_class, start, end, min_amount, max_amount)
        return _page(query.order_by(Stipend.created_at.desc()), limit, offset)

    def filtered(
        self,
        student_id: Optional[str] = None,
        payment_status: Optional[PaymentStatus] = None,
        stipend_class: Optional[StipendClass] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
    ) -> Query:
        query = self.db.query(Stipend)
        if student_id:
            query = query.filter(Stipend.student_id == student_id)
        if payment_status is not None:
            query = query.filter(Stipend.payment_status == payment_status)
        if stipend_class is not None:
            query = query.filter(Stipend.stipend_class == stipend_class)
        query = _window(query, Stipend.created_at, start, end)
        return _amount_range(query, Stipend.amount, min_amount, max_amount)

    def status_counts(self, start: Optional[datetime], end: Optional[datetime]) -> dict:
        query = self.db.query(Stipend.payment_status, func.count(Stipend.id))
        query = _window(query, Stipend.created_at, start, end)
        return {status: count for status, count in query.group_by(Stipend.payment_status).all()}

    def amount_stats(self, start: Optional[datetime], end: Optional[datetime]):
        query = self.db.query(
            func.count(Stipend.id),
            func.coalesce(func.sum(Stipend.amount), 0),
            func.min(Stipend.amount),
            func.max(Stipend.amount),
        )
        return _window(query, Stipend.created_at, start, end).one()


class DeductionRepository:
    """Repository for applied deductions"""

    def __init__(self, db: Session):
        self.db = db

    def add_all(self, deductions: List[Deduction]) -> List[Deduction]:
        self.db.add_all(deductions)
        self.db.flush()
        return deductions

    def list_for_stipend(self, stipend_id: uuid.UUID) -> List[Deduction]:
        return (
            self.db.query(Deduction)
            .filter(Deduction.stipend_id == stipend_id)
            .order_by(Deduction.created_at.asc(), Deduction.id.asc())
            .all()
        )

    def total_for_stipend(self, stipend_id: uuid.UUID) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(Deduction.amount), 0))
            .filter(Deduction.stipend_id == stipend_id)
            .scalar()
        )
        return to_money(total)

    def mark_processed(self, stipend_id: uuid.UUID, transaction_id: uuid.UUID) -> int:
        """Flag every deduction of a paid stipend as processed by the paying transaction"""
        deductions = self.list_for_stipend(stipend_id)
        for deduction in deductions:
            deduction.processing_status = ProcessingStatus.PROCESSED
            deduction.transaction_id = transaction_id
        self.db.flush()
        return len(deductions)

    def search(
        self,
        student_id: Optional[str] = None,
        stipend_id: Optional[uuid.UUID] = None,
        type_tag: Optional[str] = None,
        processing_status: Optional[ProcessingStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Tuple[List[Deduction], int]:
        query = self.filtered(student_id, stipend_id, type_tag, processing_status, start, end)
        return _page(query.order_by(Deduction.created_at.desc()), limit, offset)

    def filtered(
        self,
        student_id: Optional[str] = None,
        stipend_id: Optional[uuid.UUID] = None,
        type_tag: Optional[str] = None,
        processing_status: Optional[ProcessingStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Query:
        query = self.db.query(Deduction)
        if student_id:
            query = query.filter(Deduction.student_id == student_id)
        if stipend_id is not None:
            query = query.filter(Deduction.stipend_id == stipend_id)
        if type_tag:
            query = query.filter(Deduction.type_tag == type_tag)
        if processing_status is not None:
            query = query.filter(Deduction.processing_status == processing_status)
        return _window(query, Deduction.deduction_date, start, end)

    def totals_by_rule(self):
        """(rule, count, total) for every rule, including rules never applied"""
        return (
            self.db.query(
                DeductionRule,
                func.count(Deduction.id),
                func.coalesce(func.sum(Deduction.amount), 0),
            )
            .outerjoin(Deduction, Deduction.deduction_rule_id == DeductionRule.id)
            .group_by(DeductionRule.id)
            .order_by(DeductionRule.priority.desc(), DeductionRule.name.asc())
            .all()
        )


class TransactionRepository:
    """Repository for settlement transactions"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, transaction: Transaction) -> Transaction:
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def get(self, transaction_id: uuid.UUID) -> Optional[Transaction]:
        return self.db.query(Transaction).filter(Transaction.id == transaction_id).first()

    def get_for_update(self, transaction_id: uuid.UUID) -> Optional[Transaction]:
        return (
            self.db.query(Transaction)
            .filter(Transaction.id == transaction_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    def find_open(self, stipend_id: uuid.UUID) -> Optional[Transaction]:
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.stipend_id == stipend_id,
                Transaction.status.in_(OPEN_TRANSACTION_STATUSES),
            )
            .first()
        )

    def list_by_stipend(self, stipend_id: uuid.UUID) -> List[Transaction]:
        return (
            self.db.query(Transaction)
            .filter(Transaction.stipend_id == stipend_id)
            .order_by(Transaction.initiated_at.desc())
            .all()
        )

    def list_by_student(self, student_id: str, limit: int, offset: int) -> Tuple[List[Transaction], int]:
        query = (
            self.db.query(Transaction)
            .filter(Transaction.student_id == student_id)
            .order_by(Transaction.initiated_at.desc())
        )
        return _page(query, limit, offset)

    def search(
        self,
        student_id: Optional[str] = None,
        stipend_id: Optional[uuid.UUID] = None,
        status: Optional[TransactionStatus] = None,
        transaction_type: Optional[TransactionType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Tuple[List[Transaction], int]:
        query = self.filtered(student_id, stipend_id, status, transaction_type, start, end, min_amount, max_amount)
        return _page(query.order_by(Transaction.initiated_at.desc()), limit, offset)

    def filtered(
        self,
        student_id: Optional[str] = None,
        stipend_id: Optional[uuid.UUID] = None,
        status: Optional[TransactionStatus] = None,
        transaction_type: Optional[TransactionType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
    ) -> Query:
        query = self.db.query(Transaction)
        if student_id:
            query = query.filter(Transaction.student_id == student_id)
        if stipend_id is not None:
            query = query.filter(Transaction.stipend_id == stipend_id)
        if status is not None:
            query = query.filter(Transaction.status == status)
        if transaction_type is not None:
            query = query.filter(Transaction.transaction_type == transaction_type)
        query = _window(query, Transaction.initiated_at, start, end)
        return _amount_range(query, Transaction.amount, min_amount, max_amount)

    def status_counts(self, start: Optional[datetime], end: Optional[datetime]) -> dict:
        query = self.db.query(Transaction.status, func.count(Transaction.id))
        query = _window(query, Transaction.initiated_at, start, end)
        return {status: count for status, count in query.group_by(Transaction.status).all()}

    def amount_stats(self, start: Optional[datetime], end: Optional[datetime], status: Optional[TransactionStatus] = None):
        query = self.db.query(func.count(Transaction.id), func.coalesce(func.sum(Transaction.amount), 0))
        if status is not None:
            query = query.filter(Transaction.status == status)
        return _window(query, Transaction.initiated_at, start, end).one()


@dataclass
class AuditFilter:
    """Audit query filter; every field is optional"""

    actor: Optional[str] = None
    entity_kind: Optional[EntityKind] = None
    entity_id: Optional[str] = None
    action: Optional[AuditAction] = None
    outcome: Optional[AuditOutcome] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class AuditRepository:
    """Append-only access to audit events"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, event: AuditEvent) -> AuditEvent:
        self.db.add(event)
        self.db.flush()
        return event

    def search(self, criteria: AuditFilter, limit: int, offset: int) -> Tuple[List[AuditEvent], int]:
        query = self.db.query(AuditEvent)
        if criteria.actor:
            query = query.filter(AuditEvent.actor == criteria.actor)
        if criteria.entity_kind is not None:
            query = query.filter(AuditEvent.entity_kind == criteria.entity_kind)
        if criteria.entity_id:
            query = query.filter(AuditEvent.entity_id == criteria.entity_id)
        if criteria.action is not None:
            query = query.filter(AuditEvent.action == criteria.action)
        if criteria.outcome is not None:
            query = query.filter(AuditEvent.outcome == criteria.outcome)
        query = _window(query, AuditEvent.timestamp, criteria.start, criteria.end)
        return _page(query.order_by(AuditEvent.timestamp.desc()), limit, offset)
