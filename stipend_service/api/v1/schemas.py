"""Pydantic schemas for API request/response validation"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

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


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PageMeta(BaseModel):
    total: int
    limit: int
    offset: int


# -- rules --------------------------------------------------------------------


class RuleCreateRequest(BaseModel):
    """Request body for POST /v1/rules"""

    name: str = Field(..., description="Unique rule name")
    type_tag: str = Field(..., description="Short type tag, e.g. hostel or mess_fees")
    description: str = ""
    base_amount: Decimal
    min_amount: Decimal = Decimal("0")
    max_amount: Decimal
    applies_to_full_scholar: bool = False
    applies_to_self_funded: bool = False
    applies_monthly: bool = False
    applies_annually: bool = False
    is_optional: bool = False
    priority: int = 0


class RulePatchRequest(BaseModel):
    """Request body for PATCH /v1/rules/{rule_id}; only supplied fields change"""

    name: Optional[str] = None
    type_tag: Optional[str] = None
    description: Optional[str] = None
    base_amount: Optional[Decimal] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    applies_to_full_scholar: Optional[bool] = None
    applies_to_self_funded: Optional[bool] = None
    applies_monthly: Optional[bool] = None
    applies_annually: Optional[bool] = None
    is_optional: Optional[bool] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class RuleResponse(ORMModel):
    id: uuid.UUID
    name: str
    type_tag: str
    description: str
    base_amount: Decimal
    min_amount: Decimal
    max_amount: Decimal
    applies_to_full_scholar: bool
    applies_to_self_funded: bool
    applies_monthly: bool
    applies_annually: bool
    is_optional: bool
    priority: int
    is_active: bool
    created_by: Optional[str] = None
    modified_by: Optional[str] = None
    created_at: datetime
    modified_at: datetime


class RuleListResponse(PageMeta):
    items: List[RuleResponse]


# -- calculation --------------------------------------------------------------


class CalculationRequest(BaseModel):
    """Request body for the /v1/calculations endpoints"""

    student_id: str = Field(..., min_length=1)
    stipend_class: StipendClass
    amount: Decimal = Field(..., description="Base amount, or the annual amount for monthly/annual entry points")
    rule_ids: Optional[List[uuid.UUID]] = None


class AppliedDeductionSchema(ORMModel):
    rule_id: uuid.UUID
    rule_name: str
    type_tag: str
    amount: Decimal
    description: str
    is_optional: bool
    skipped_reason: Optional[str] = None


class CalculationResponse(ORMModel):
    base_amount: Decimal
    total_deductions: Decimal
    net_amount: Decimal
    applied: List[AppliedDeductionSchema]


# -- stipends -----------------------------------------------------------------


class StipendCreateRequest(BaseModel):
    """Request body for POST /v1/stipends"""

    student_id: str = Field(..., min_length=1)
    stipend_class: StipendClass
    amount: Decimal = Field(..., description="Base amount before deductions")
    payment_method: str
    journal_number: str
    notes: Optional[str] = None
    apply_deductions: bool = True
    rule_ids: Optional[List[uuid.UUID]] = Field(None, description="Optional rules to include; mandatory rules always apply")


class DeductionLine(BaseModel):
    rule_id: uuid.UUID
    amount: Decimal


class ApplyDeductionsRequest(BaseModel):
    """Request body for POST /v1/stipends/{stipend_id}/deductions"""

    deductions: List[DeductionLine] = Field(..., min_length=1)


class PaymentStatusRequest(BaseModel):
    status: PaymentStatus
    when: Optional[datetime] = None
    transaction_id: Optional[uuid.UUID] = None


class NotesRequest(BaseModel):
    notes: Optional[str] = None


class DeductionResponse(ORMModel):
    id: uuid.UUID
    student_id: str
    stipend_id: uuid.UUID
    deduction_rule_id: uuid.UUID
    amount: Decimal
    type_tag: str
    description: str
    processing_status: ProcessingStatus
    approved_by: Optional[str] = None
    approval_date: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    deduction_date: datetime
    transaction_id: Optional[uuid.UUID] = None
    created_at: datetime


class StipendResponse(ORMModel):
    id: uuid.UUID
    student_id: str
    amount: Decimal
    stipend_class: StipendClass
    payment_status: PaymentStatus
    payment_method: str
    journal_number: str
    notes: Optional[str] = None
    payment_date: Optional[datetime] = None
    linked_transaction_id: Optional[uuid.UUID] = None
    created_at: datetime
    modified_at: datetime


class StipendDetailResponse(StipendResponse):
    total_deductions: Decimal
    net_amount: Decimal
    deductions: List[DeductionResponse]


class StipendListResponse(PageMeta):
    items: List[StipendResponse]


class DeductionListResponse(PageMeta):
    items: List[DeductionResponse]


# -- transfers ----------------------------------------------------------------


class TransferInitiateRequest(BaseModel):
    stipend_id: uuid.UUID
    payment_method: str


class ReasonRequest(BaseModel):
    reason: str


class TransactionResponse(ORMModel):
    id: uuid.UUID
    stipend_id: uuid.UUID
    student_id: str
    amount: Decimal
    source_account: str
    destination_account: str
    destination_bank: str
    status: TransactionStatus
    payment_method: str
    transaction_type: TransactionType
    reference_number: Optional[str] = None
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    remarks: Optional[str] = None
    attempt_count: int
    correlation_id: Optional[str] = None
    initiated_at: datetime
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class TransactionListResponse(PageMeta):
    items: List[TransactionResponse]


# -- audit --------------------------------------------------------------------


class AuditEventResponse(ORMModel):
    id: uuid.UUID
    action: AuditAction
    entity_kind: EntityKind
    entity_id: Optional[str] = None
    actor: str
    description: str
    old_snapshot: Optional[dict] = None
    new_snapshot: Optional[dict] = None
    outcome: AuditOutcome
    error_text: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime


class AuditEventListResponse(PageMeta):
    items: List[AuditEventResponse]


# -- reports ------------------------------------------------------------------


class DisbursementSummaryResponse(ORMModel):
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    total_stipends: int
    total_amount: Decimal
    pending_count: int
    processed_count: int
    failed_count: int
    average_amount: Decimal
    min_amount: Decimal
    max_amount: Decimal


class RuleDeductionSummaryResponse(ORMModel):
    rule_id: uuid.UUID
    rule_name: str
    type_tag: str
    is_active: bool
    applies_to_full_scholar: bool
    applies_to_self_funded: bool
    applications: int
    total_deducted: Decimal
    average_deduction: Decimal


class DeductionSummaryResponse(BaseModel):
    rules: List[RuleDeductionSummaryResponse]


class TransactionSummaryResponse(ORMModel):
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    total_transactions: int
    total_amount: Decimal
    settled_amount: Decimal
    average_amount: Decimal
    status_counts: Dict[str, int]
