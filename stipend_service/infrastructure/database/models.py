"""SQLAlchemy ORM models for rules, stipends, deductions, transactions and audit events"""

import uuid
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

from stipend_service.domain.enums import (
    AuditAction,
    AuditOutcome,
    EntityKind,
    ErrorKind,
    PaymentStatus,
    ProcessingStatus,
    StipendClass,
    TransactionStatus,
    TransactionType,
)
from stipend_service.utils.date_utils import ensure_utc, utcnow

Base = declarative_base()

Money = Numeric(12, 2)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back as UTC, including from SQLite"""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return ensure_utc(value)

    def process_result_value(self, value, dialect):
        return ensure_utc(value)


def enum_column(enum_cls, name: str) -> SAEnum:
    """Store enum values (not member names) as bounded strings"""
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class DeductionRule(Base):
    """Authored deduction policy; retired rather than deleted"""

    __tablename__ = "deduction_rules"
    __table_args__ = (
        CheckConstraint("min_amount >= 0", name="ck_rule_min_non_negative"),
        CheckConstraint("min_amount <= base_amount", name="ck_rule_min_le_base"),
        CheckConstraint("base_amount <= max_amount", name="ck_rule_base_le_max"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False, unique=True)
    type_tag = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    base_amount = Column(Money, nullable=False)
    min_amount = Column(Money, nullable=False)
    max_amount = Column(Money, nullable=False)
    applies_to_full_scholar = Column(Boolean, nullable=False, default=False)
    applies_to_self_funded = Column(Boolean, nullable=False, default=False)
    applies_monthly = Column(Boolean, nullable=False, default=False)
    applies_annually = Column(Boolean, nullable=False, default=False)
    is_optional = Column(Boolean, nullable=False, default=False)
    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_by = Column(Text, nullable=True)
    modified_by = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    modified_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Stipend(Base):
    """Authorised payout intent; amount and class never change after creation"""

    __tablename__ = "stipends"
    __table_args__ = (CheckConstraint("amount >= 0", name="ck_stipend_amount_non_negative"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Text, nullable=False, index=True)
    amount = Column(Money, nullable=False)
    stipend_class = Column(enum_column(StipendClass, "stipend_class"), nullable=False, index=True)
    payment_status = Column(
        enum_column(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.PENDING, index=True
    )
    payment_method = Column(String(50), nullable=False)
    journal_number = Column(String(255), nullable=False, unique=True)
    notes = Column(Text, nullable=True)
    payment_date = Column(UTCDateTime, nullable=True)
    linked_transaction_id = Column(Uuid, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)
    modified_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    deductions = relationship(
        "Deduction",
        back_populates="stipend",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Deduction.created_at",
    )


class Deduction(Base):
    """One applied rule against one stipend"""

    __tablename__ = "deductions"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_deduction_amount_positive"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Text, nullable=False, index=True)
    stipend_id = Column(Uuid, ForeignKey("stipends.id", ondelete="CASCADE"), nullable=False, index=True)
    deduction_rule_id = Column(Uuid, ForeignKey("deduction_rules.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    type_tag = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    processing_status = Column(
        enum_column(ProcessingStatus, "processing_status"), nullable=False, default=ProcessingStatus.PENDING, index=True
    )
    approved_by = Column(Text, nullable=True)
    approval_date = Column(UTCDateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    deduction_date = Column(UTCDateTime, nullable=False, default=utcnow)
    transaction_id = Column(Uuid, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    modified_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    stipend = relationship("Stipend", back_populates="deductions")


_OPEN_STATUSES_SQL = "status IN ('PENDING', 'PROCESSING', 'FAILED')"


class Transaction(Base):
    """Settlement attempt for a stipend's net amount"""

    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transaction_amount_non_negative"),
        # At most one open transaction per stipend, enforced under concurrent Initiate
        Index(
            "uq_transactions_open_per_stipend",
            "stipend_id",
            unique=True,
            sqlite_where=text(_OPEN_STATUSES_SQL),
            postgresql_where=text(_OPEN_STATUSES_SQL),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    stipend_id = Column(Uuid, ForeignKey("stipends.id"), nullable=False, index=True)
    student_id = Column(Text, nullable=False, index=True)
    amount = Column(Money, nullable=False)
    source_account = Column(String(100), nullable=False)
    destination_account = Column(String(100), nullable=False)
    destination_bank = Column(String(100), nullable=False)
    status = Column(enum_column(TransactionStatus, "transaction_status"), nullable=False, index=True)
    payment_method = Column(String(50), nullable=False)
    transaction_type = Column(
        enum_column(TransactionType, "transaction_type"), nullable=False, default=TransactionType.STIPEND
    )
    reference_number = Column(String(100), nullable=True, unique=True)
    error_message = Column(Text, nullable=True)
    error_kind = Column(enum_column(ErrorKind, "error_kind"), nullable=True)
    remarks = Column(Text, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    correlation_id = Column(String(100), nullable=True)
    initiated_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)
    processed_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    modified_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)


class AuditEvent(Base):
    """Append-only record of a write and its outcome"""

    __tablename__ = "audit_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    action = Column(enum_column(AuditAction, "audit_action"), nullable=False, index=True)
    entity_kind = Column(enum_column(EntityKind, "entity_kind"), nullable=False, index=True)
    entity_id = Column(Text, nullable=True, index=True)
    actor = Column(Text, nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    old_snapshot = Column(JSON(none_as_null=True), nullable=True)
    new_snapshot = Column(JSON(none_as_null=True), nullable=True)
    outcome = Column(enum_column(AuditOutcome, "audit_outcome"), nullable=False, index=True)
    error_text = Column(Text, nullable=True)
    request_id = Column(String(64), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    timestamp = Column(UTCDateTime, nullable=False, default=utcnow, index=True)
