"""Transfer endpoints - initiate, settle, cancel and retry stipend payouts"""

import uuid
from typing import List

from fastapi import APIRouter, Depends, Query, status

from stipend_service.api.dependencies import ensure_student_access, get_context, get_transfer_engine, require_staff
from stipend_service.api.v1.schemas import (
    ReasonRequest,
    TransactionListResponse,
    TransactionResponse,
    TransferInitiateRequest,
)
from stipend_service.services.context import RequestContext
from stipend_service.services.transfers import TransferEngine

router = APIRouter()


@router.post("/transfers", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def initiate_transfer(
    body: TransferInitiateRequest,
    engine: TransferEngine = Depends(get_transfer_engine),
    ctx: RequestContext = Depends(require_staff),
):
    """
    Open a PENDING transaction for the stipend's net amount.

    A stipend holds at most one open transaction at a time.
    """
    return await engine.initiate(body.stipend_id, body.payment_method)


@router.post("/transfers/{transaction_id}/process", response_model=TransactionResponse)
async def process_transfer(
    transaction_id: uuid.UUID,
    engine: TransferEngine = Depends(get_transfer_engine),
    ctx: RequestContext = Depends(require_staff),
):
    """Submit to the settlement oracle; the response carries SUCCESS or FAILED"""
    return await engine.process(transaction_id)


@router.post("/transfers/{transaction_id}/cancel", response_model=TransactionResponse)
async def cancel_transfer(
    transaction_id: uuid.UUID,
    body: ReasonRequest,
    engine: TransferEngine = Depends(get_transfer_engine),
    ctx: RequestContext = Depends(require_staff),
):
    return await engine.cancel(transaction_id, body.reason)


@router.post("/transfers/{transaction_id}/retry", response_model=TransactionResponse)
async def retry_transfer(
    transaction_id: uuid.UUID,
    engine: TransferEngine = Depends(get_transfer_engine),
    ctx: RequestContext = Depends(require_staff),
):
    return await engine.retry(transaction_id)


@router.post("/transfers/{transaction_id}/decline-retry", response_model=TransactionResponse)
async def decline_retry(
    transaction_id: uuid.UUID,
    body: ReasonRequest,
    engine: TransferEngine = Depends(get_transfer_engine),
    ctx: RequestContext = Depends(require_staff),
):
    """Give up on a FAILED transfer and mark its stipend Failed"""
    return await engine.decline_retry(transaction_id, body.reason)


@router.get("/transfers/{transaction_id}", response_model=TransactionResponse)
def get_transfer(
    transaction_id: uuid.UUID,
    engine: TransferEngine = Depends(get_transfer_engine),
    ctx: RequestContext = Depends(get_context),
):
    transaction = engine.get_status(transaction_id)
    ensure_student_access(ctx, transaction.student_id)
    return transaction


@router.get("/stipends/{stipend_id}/transfers", response_model=List[TransactionResponse])
def list_stipend_transfers(
    stipend_id: uuid.UUID,
    engine: TransferEngine = Depends(get_transfer_engine),
    ctx: RequestContext = Depends(get_context),
):
    ensure_student_access(ctx, engine.ledger.get_stipend(stipend_id).student_id)
    return engine.list_by_stipend(stipend_id)


@router.get("/students/{student_id}/transfers", response_model=TransactionListResponse)
def list_student_transfers(
    student_id: str,
    limit: int = Query(10, ge=1),
    offset: int = Query(0, ge=0),
    engine: TransferEngine = Depends(get_transfer_engine),
    ctx: RequestContext = Depends(get_context),
):
    ensure_student_access(ctx, student_id)
    transactions, total = engine.list_by_student(student_id, limit, offset)
    return TransactionListResponse(items=transactions, total=total, limit=min(limit, 100), offset=offset)
