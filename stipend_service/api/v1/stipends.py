"""Stipend endpoints - creation with deductions, reads and payment status"""

import asyncio
import logging
import uuid
from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from stipend_service.api.dependencies import (
    ensure_student_access,
    get_context,
    get_ledger,
    get_students_client,
    require_staff,
)
from stipend_service.api.v1.schemas import (
    ApplyDeductionsRequest,
    DeductionResponse,
    NotesRequest,
    PaymentStatusRequest,
    StipendCreateRequest,
    StipendDetailResponse,
    StipendListResponse,
    StipendResponse,
)
from stipend_service.domain.exceptions import DeadlineExceededError, InvalidInputError
from stipend_service.infrastructure.clients.students import StudentsClient
from stipend_service.infrastructure.database.models import Deduction, Stipend
from stipend_service.infrastructure.database.session import get_db
from stipend_service.services.calculation import CalculationService
from stipend_service.services.context import RequestContext
from stipend_service.services.ledger import StipendLedger
from stipend_service.utils.money import to_money

router = APIRouter()
logger = logging.getLogger(__name__)


def stipend_detail(stipend: Stipend, deductions: List[Deduction]) -> StipendDetailResponse:
    total = to_money(sum((deduction.amount for deduction in deductions), Decimal("0")))
    return StipendDetailResponse(
        **StipendResponse.model_validate(stipend).model_dump(),
        total_deductions=total,
        net_amount=to_money(stipend.amount - total),
        deductions=[DeductionResponse.model_validate(deduction) for deduction in deductions],
    )


async def check_student(students: StudentsClient, ctx: RequestContext, student_id: str, stipend_class) -> None:
    """Reject unknown or ineligible students, and a class that disagrees with the student record"""
    try:
        record = await asyncio.wait_for(students.get_student(student_id), timeout=ctx.remaining())
    except asyncio.TimeoutError as e:
        raise DeadlineExceededError(f"student lookup for {student_id} exceeded the request deadline") from e
    if not record.exists:
        raise InvalidInputError(f"student {student_id} not found")
    if not record.eligible:
        raise InvalidInputError(f"student {student_id} is not eligible for a stipend")
    if record.stipend_class is not None and record.stipend_class is not stipend_class:
        raise InvalidInputError(
            f"student {student_id} is {record.stipend_class.value}, not {stipend_class.value}"
        )


@router.post("/stipends", response_model=StipendDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_stipend(
    body: StipendCreateRequest,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_staff),
    students: StudentsClient = Depends(get_students_client),
):
    """
    Create a stipend and, unless disabled, apply its calculated deductions.

    Flow:
    1. Confirm the student with the Students service
    2. Calculate deductions from the applicable rules
    3. Persist stipend + deductions as one unit of work
    """
    await check_student(students, ctx, body.student_id, body.stipend_class)

    applied = []
    if body.apply_deductions:
        result = CalculationService(db, ctx).calculate(body.student_id, body.stipend_class, body.amount, body.rule_ids)
        applied = result.applied

    ledger = StipendLedger(db, ctx)
    stipend, deductions = ledger.create_stipend_with_deductions(
        student_id=body.student_id,
        stipend_class=body.stipend_class,
        base_amount=body.amount,
        payment_method=body.payment_method,
        journal_number=body.journal_number,
        notes=body.notes,
        applied=applied,
    )
    return stipend_detail(stipend, deductions)


@router.get("/stipends/{stipend_id}", response_model=StipendDetailResponse)
def get_stipend(
    stipend_id: uuid.UUID,
    ledger: StipendLedger = Depends(get_ledger),
    ctx: RequestContext = Depends(get_context),
):
    stipend = ledger.get_stipend(stipend_id)
    ensure_student_access(ctx, stipend.student_id)
    return stipend_detail(stipend, ledger.list_deductions(stipend_id))


@router.get("/students/{student_id}/stipends", response_model=StipendListResponse)
def list_student_stipends(
    student_id: str,
    limit: int = Query(10, ge=1),
    offset: int = Query(0, ge=0),
    ledger: StipendLedger = Depends(get_ledger),
    ctx: RequestContext = Depends(get_context),
):
    ensure_student_access(ctx, student_id)
    stipends, total = ledger.list_for_student(student_id, limit, offset)
    return StipendListResponse(items=stipends, total=total, limit=min(limit, 100), offset=offset)


@router.get("/stipends/{stipend_id}/deductions", response_model=List[DeductionResponse])
def get_deductions(
    stipend_id: uuid.UUID,
    ledger: StipendLedger = Depends(get_ledger),
    ctx: RequestContext = Depends(get_context),
):
    stipend = ledger.get_stipend(stipend_id)
    ensure_student_access(ctx, stipend.student_id)
    return ledger.list_deductions(stipend_id)


@router.post("/stipends/{stipend_id}/deductions", response_model=List[DeductionResponse], status_code=status.HTTP_201_CREATED)
def apply_deductions(
    stipend_id: uuid.UUID,
    body: ApplyDeductionsRequest,
    ledger: StipendLedger = Depends(get_ledger),
    ctx: RequestContext = Depends(require_staff),
):
    return ledger.apply_deductions(stipend_id, body.deductions)


@router.patch("/stipends/{stipend_id}/payment-status", response_model=StipendResponse)
def set_payment_status(
    stipend_id: uuid.UUID,
    body: PaymentStatusRequest,
    ledger: StipendLedger = Depends(get_ledger),
    ctx: RequestContext = Depends(require_staff),
):
    """Pending -> Processed | Failed through the ledger's state machine; refused while a transfer is open"""
    return ledger.set_payment_status(stipend_id, body.status, when=body.when, transaction_id=body.transaction_id)


@router.patch("/stipends/{stipend_id}/notes", response_model=StipendResponse)
def update_notes(
    stipend_id: uuid.UUID,
    body: NotesRequest,
    ledger: StipendLedger = Depends(get_ledger),
    ctx: RequestContext = Depends(require_staff),
):
    return ledger.update_notes(stipend_id, body.notes)
