"""Read model: filtered pagination, summaries and CSV projections over committed state"""

import csv
import io
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from stipend_service.domain.enums import (
    PaymentStatus,
    ProcessingStatus,
    StipendClass,
    TransactionStatus,
    TransactionType,
)
from stipend_service.domain.exceptions import InvalidInputError
from stipend_service.domain.limits import normalize_page
from stipend_service.infrastructure.database.models import Deduction, DeductionRule, Stipend, Transaction
from stipend_service.infrastructure.database.repositories import (
    DeductionRepository,
    RuleRepository,
    StipendRepository,
    TransactionRepository,
)
from stipend_service.utils.date_utils import ensure_utc, format_rfc3339
from stipend_service.utils.money import ZERO, format_money, to_money

STIPEND_CSV_HEADER = ["id", "student_id", "amount", "class", "payment_status", "journal_number", "created_at", "modified_at"]
DEDUCTION_CSV_HEADER = ["id", "student_id", "type", "amount", "processing_status", "deduction_date", "created_at"]
TRANSACTION_CSV_HEADER = [
    "id",
    "student_id",
    "amount",
    "status",
    "type",
    "destination_account",
    "destination_bank",
    "reference_number",
    "initiated_at",
    "processed_at",
    "completed_at",
]

CSV_BATCH_SIZE = 500


def stipend_csv_row(stipend: Stipend) -> List[str]:
    return [
        str(stipend.id),
        stipend.student_id,
        format_money(stipend.amount),
        stipend.stipend_class.value,
        stipend.payment_status.value,
        stipend.journal_number,
        format_rfc3339(stipend.created_at),
        format_rfc3339(stipend.modified_at),
    ]


def deduction_csv_row(deduction: Deduction) -> List[str]:
    return [
        str(deduction.id),
        deduction.student_id,
        deduction.type_tag,
        format_money(deduction.amount),
        deduction.processing_status.value,
        format_rfc3339(deduction.deduction_date),
        format_rfc3339(deduction.created_at),
    ]


def transaction_csv_row(transaction: Transaction) -> List[str]:
    return [
        str(transaction.id),
        transaction.student_id,
        format_money(transaction.amount),
        transaction.status.value,
        transaction.transaction_type.value,
        transaction.destination_account,
        transaction.destination_bank,
        transaction.reference_number or "",
        format_rfc3339(transaction.initiated_at),
        format_rfc3339(transaction.processed_at),
        format_rfc3339(transaction.completed_at),
    ]


def _csv_line(values: Sequence[str]) -> str:
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(values)
    return buffer.getvalue()


def _check_window(start: Optional[datetime], end: Optional[datetime]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Window bounds in UTC; naive bounds are read as UTC"""
    start, end = ensure_utc(start), ensure_utc(end)
    if start is not None and end is not None and start > end:
        raise InvalidInputError("start of the reporting window is after its end")
    return start, end


@dataclass(frozen=True)
class DisbursementSummary:
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    total_stipends: int
    total_amount: Decimal
    pending_count: int
    processed_count: int
    failed_count: int
    average_amount: Decimal
    min_amount: Decimal
    max_amount: Decimal


@dataclass(frozen=True)
class RuleDeductionSummary:
    rule_id: uuid.UUID
    rule_name: str
    type_tag: str
    is_active: bool
    applies_to_full_scholar: bool
    applies_to_self_funded: bool
    applications: int
    total_deducted: Decimal
    average_deduction: Decimal


@dataclass(frozen=True)
class TransactionSummary:
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    total_transactions: int
    total_amount: Decimal
    settled_amount: Decimal
    average_amount: Decimal
    status_counts: Dict[str, int] = field(default_factory=dict)


class ReadModel:
    """Read-only projection over stipends, deductions, rules and transactions"""

    def __init__(self, db: Session):
        self.db = db
        self.stipends = StipendRepository(db)
        self.deductions = DeductionRepository(db)
        self.rules = RuleRepository(db)
        self.transactions = TransactionRepository(db)

    # -- filtered pagination ------------------------------------------------

    def search_stipends(
        self,
        student_id: Optional[str] = None,
        payment_status: Optional[PaymentStatus] = None,
        stipend_class: Optional[StipendClass] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Tuple[List[Stipend], int]:
        start, end = _check_window(start, end)
        limit, offset = normalize_page(limit, offset)
        return self.stipends.search(student_id, payment_status, stipend_class, start, end, min_amount, max_amount, limit, offset)

    def search_deductions(
        self,
        student_id: Optional[str] = None,
        stipend_id: Optional[uuid.UUID] = None,
        type_tag: Optional[str] = None,
        processing_status: Optional[ProcessingStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Tuple[List[Deduction], int]:
        start, end = _check_window(start, end)
        limit, offset = normalize_page(limit, offset)
        return self.deductions.search(student_id, stipend_id, type_tag, processing_status, start, end, limit, offset)

    def search_rules(
        self,
        name: Optional[str] = None,
        type_tag: Optional[str] = None,
        is_active: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Tuple[List[DeductionRule], int]:
        limit, offset = normalize_page(limit, offset)
        return self.rules.search(name, type_tag, is_active, limit, offset)

    def search_transactions(
        self,
        student_id: Optional[str] = None,
        stipend_id: Optional[uuid.UUID] = None,
        status: Optional[TransactionStatus] = None,
        transaction_type: Optional[TransactionType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Tuple[List[Transaction], int]:
        start, end = _check_window(start, end)
        limit, offset = normalize_page(limit, offset)
        return self.transactions.search(
            student_id, stipend_id, status, transaction_type, start, end, min_amount, max_amount, limit, offset
        )

    # -- summaries ----------------------------------------------------------

    def disbursement_summary(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> DisbursementSummary:
        """Stipend counts and amounts for stipends created inside the window"""
        start, end = _check_window(start, end)
        count, total, smallest, largest = self.stipends.amount_stats(start, end)
        counts = self.stipends.status_counts(start, end)
        total = to_money(total or 0)
        return DisbursementSummary(
            period_start=start,
            period_end=end,
            total_stipends=count,
            total_amount=total,
            pending_count=counts.get(PaymentStatus.PENDING, 0),
            processed_count=counts.get(PaymentStatus.PROCESSED, 0),
            failed_count=counts.get(PaymentStatus.FAILED, 0),
            average_amount=to_money(total / count) if count else ZERO,
            min_amount=to_money(smallest) if smallest is not None else ZERO,
            max_amount=to_money(largest) if largest is not None else ZERO,
        )

    def deduction_summary(self) -> List[RuleDeductionSummary]:
        """Per-rule totals, including rules that were never applied"""
        summaries = []
        for rule, applications, total in self.deductions.totals_by_rule():
            total = to_money(total or 0)
            summaries.append(
                RuleDeductionSummary(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    type_tag=rule.type_tag,
                    is_active=rule.is_active,
                    applies_to_full_scholar=rule.applies_to_full_scholar,
                    applies_to_self_funded=rule.applies_to_self_funded,
                    applications=applications,
                    total_deducted=total,
                    average_deduction=to_money(total / applications) if applications else ZERO,
                )
            )
        return summaries

    def transaction_summary(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> TransactionSummary:
        start, end = _check_window(start, end)
        count, total = self.transactions.amount_stats(start, end)
        _, settled = self.transactions.amount_stats(start, end, status=TransactionStatus.SUCCESS)
        counts = self.transactions.status_counts(start, end)
        total = to_money(total or 0)
        return TransactionSummary(
            period_start=start,
            period_end=end,
            total_transactions=count,
            total_amount=total,
            settled_amount=to_money(settled or 0),
            average_amount=to_money(total / count) if count else ZERO,
            status_counts={status.value: counts.get(status, 0) for status in TransactionStatus},
        )

    # -- CSV ----------------------------------------------------------------

    def iter_stipends_csv(self, **filters) -> Iterator[str]:
        filters["start"], filters["end"] = _check_window(filters.get("start"), filters.get("end"))
        yield _csv_line(STIPEND_CSV_HEADER)
        query = self.stipends.filtered(**filters).order_by(Stipend.created_at.asc(), Stipend.id.asc())
        for stipend in query.yield_per(CSV_BATCH_SIZE):
            yield _csv_line(stipend_csv_row(stipend))

    def iter_deductions_csv(self, **filters) -> Iterator[str]:
        filters["start"], filters["end"] = _check_window(filters.get("start"), filters.get("end"))
        yield _csv_line(DEDUCTION_CSV_HEADER)
        query = self.deductions.filtered(**filters).order_by(Deduction.created_at.asc(), Deduction.id.asc())
        for deduction in query.yield_per(CSV_BATCH_SIZE):
            yield _csv_line(deduction_csv_row(deduction))

    def iter_transactions_csv(self, **filters) -> Iterator[str]:
        filters["start"], filters["end"] = _check_window(filters.get("start"), filters.get("end"))
        yield _csv_line(TRANSACTION_CSV_HEADER)
        query = self.transactions.filtered(**filters).order_by(Transaction.initiated_at.asc(), Transaction.id.asc())
        for transaction in query.yield_per(CSV_BATCH_SIZE):
            yield _csv_line(transaction_csv_row(transaction))
