"""Reporting endpoints - summaries, filtered searches and CSV exports"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from stipend_service.api.dependencies import require_staff
from stipend_service.api.v1.schemas import (
    DeductionListResponse,
    DeductionSummaryResponse,
    DisbursementSummaryResponse,
    RuleListResponse,
    StipendListResponse,
    TransactionListResponse,
    TransactionSummaryResponse,
)
from stipend_service.domain.enums import PaymentStatus, ProcessingStatus, StipendClass, TransactionStatus, TransactionType
from stipend_service.infrastructure.database.session import get_db
from stipend_service.services.context import RequestContext
from stipend_service.services.reports import ReadModel

router = APIRouter()


def get_read_model(db: Session = Depends(get_db), ctx: RequestContext = Depends(require_staff)) -> ReadModel:
    return ReadModel(db)


def _csv_response(request: Request, export: str, filename: str, filters: dict) -> StreamingResponse:
    """
    Stream a CSV export from a dedicated read session.

    The header row is produced before the response starts so filter errors
    still surface as a 400.
    """
    db = request.app.state.session_factory()
    try:
        rows = getattr(ReadModel(db), export)(**filters)
        header = next(rows)
    except Exception:
        db.close()
        raise

    def body():
        try:
            yield header
            yield from rows
        finally:
            db.close()

    return StreamingResponse(
        body(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# -- summaries ----------------------------------------------------------------


@router.get("/reports/disbursements", response_model=DisbursementSummaryResponse)
def disbursement_report(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    model: ReadModel = Depends(get_read_model),
):
    return model.disbursement_summary(start, end)


@router.get("/reports/deductions", response_model=DeductionSummaryResponse)
def deduction_report(model: ReadModel = Depends(get_read_model)):
    return DeductionSummaryResponse(rules=model.deduction_summary())


@router.get("/reports/transactions", response_model=TransactionSummaryResponse)
def transaction_report(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    model: ReadModel = Depends(get_read_model),
):
    return model.transaction_summary(start, end)


# -- searches -----------------------------------------------------------------


@router.get("/search/stipends", response_model=StipendListResponse)
def search_stipends(
    student_id: Optional[str] = None,
    payment_status: Optional[PaymentStatus] = None,
    stipend_class: Optional[StipendClass] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    limit: int = Query(10, ge=1),
    offset: int = Query(0, ge=0),
    model: ReadModel = Depends(get_read_model),
):
    stipends, total = model.search_stipends(
        student_id, payment_status, stipend_class, start, end, min_amount, max_amount, limit, offset
    )
    return StipendListResponse(items=stipends, total=total, limit=min(limit, 100), offset=offset)


@router.get("/search/deductions", response_model=DeductionListResponse)
def search_deductions(
    student_id: Optional[str] = None,
    stipend_id: Optional[uuid.UUID] = None,
    type_tag: Optional[str] = None,
    processing_status: Optional[ProcessingStatus] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(10, ge=1),
    offset: int = Query(0, ge=0),
    model: ReadModel = Depends(get_read_model),
):
    deductions, total = model.search_deductions(student_id, stipend_id, type_tag, processing_status, start, end, limit, offset)
    return DeductionListResponse(items=deductions, total=total, limit=min(limit, 100), offset=offset)


@router.get("/search/rules", response_model=RuleListResponse)
def search_rules(
    name: Optional[str] = None,
    type_tag: Optional[str] = None,
    is_active: Optional[bool] = None,
    limit: int = Query(10, ge=1),
    offset: int = Query(0, ge=0),
    model: ReadModel = Depends(get_read_model),
):
    rules, total = model.search_rules(name, type_tag, is_active, limit, offset)
    return RuleListResponse(items=rules, total=total, limit=min(limit, 100), offset=offset)


@router.get("/search/transactions", response_model=TransactionListResponse)
def search_transactions(
    student_id: Optional[str] = None,
    stipend_id: Optional[uuid.UUID] = None,
    status: Optional[TransactionStatus] = None,
    transaction_type: Optional[TransactionType] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    limit: int = Query(10, ge=1),
    offset: int = Query(0, ge=0),
    model: ReadModel = Depends(get_read_model),
):
    transactions, total = model.search_transactions(
        student_id, stipend_id, status, transaction_type, start, end, min_amount, max_amount, limit, offset
    )
    return TransactionListResponse(items=transactions, total=total, limit=min(limit, 100), offset=offset)


# -- CSV exports --------------------------------------------------------------


@router.get("/reports/stipends.csv")
def export_stipends(
    request: Request,
    student_id: Optional[str] = None,
    payment_status: Optional[PaymentStatus] = None,
    stipend_class: Optional[StipendClass] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    ctx: RequestContext = Depends(require_staff),
):
    filters = dict(
        student_id=student_id,
        payment_status=payment_status,
        stipend_class=stipend_class,
        start=start,
        end=end,
        min_amount=min_amount,
        max_amount=max_amount,
    )
    return _csv_response(request, "iter_stipends_csv", "stipends.csv", filters)


@router.get("/reports/deductions.csv")
def export_deductions(
    request: Request,
    student_id: Optional[str] = None,
    stipend_id: Optional[uuid.UUID] = None,
    type_tag: Optional[str] = None,
    processing_status: Optional[ProcessingStatus] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    ctx: RequestContext = Depends(require_staff),
):
    filters = dict(
        student_id=student_id,
        stipend_id=stipend_id,
        type_tag=type_tag,
        processing_status=processing_status,
        start=start,
        end=end,
    )
    return _csv_response(request, "iter_deductions_csv", "deductions.csv", filters)


@router.get("/reports/transactions.csv")
def export_transactions(
    request: Request,
    student_id: Optional[str] = None,
    stipend_id: Optional[uuid.UUID] = None,
    status: Optional[TransactionStatus] = None,
    transaction_type: Optional[TransactionType] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    ctx: RequestContext = Depends(require_staff),
):
    filters = dict(
        student_id=student_id,
        stipend_id=stipend_id,
        status=status,
        transaction_type=transaction_type,
        start=start,
        end=end,
        min_amount=min_amount,
        max_amount=max_amount,
    )
    return _csv_response(request, "iter_transactions_csv", "transactions.csv", filters)
